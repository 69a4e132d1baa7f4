#!/usr/bin/env python3
"""
Execution state shared by the parser, the builtins and the executor.

An ExecutionContext belongs to exactly one call of execute_shell: it is
created there, threaded through every step explicitly and dropped when
the call returns.
"""

import time
from typing import Dict, Optional
from dataclasses import dataclass, field

from .workspace import ROOT, display_path

TIMEOUT_MESSAGE = '[command timed out]'


class ShellTimeout(Exception):
    """The invocation ran past its deadline."""

    def __init__(self, message: str = TIMEOUT_MESSAGE):
        super().__init__(message)


@dataclass
class ShellConfig:
    """Configuration for the interpreter."""
    default_timeout: float = 30.0
    max_timeout: float = 120.0
    max_sleep: float = 5.0  # Upper bound for a single `sleep`
    yes_lines: int = 100  # Lines emitted by `yes`
    home: str = '/workspace'
    path: str = '/usr/bin'
    fallback_tool: str = 'python'  # Suggested when a command is unknown

    def default_env(self) -> Dict[str, str]:
        return {'HOME': self.home, 'PATH': self.path, 'PWD': self.home}


@dataclass(frozen=True)
class ShellResult:
    """Captured output of a command, a pipe or a whole command line."""
    stdout: str = ''
    stderr: str = ''
    exit_code: int = 0

    @classmethod
    def success(cls, stdout: str = '') -> 'ShellResult':
        return cls(stdout=stdout)

    @classmethod
    def failure(cls, stderr: str = '', exit_code: int = 1) -> 'ShellResult':
        return cls(stderr=stderr, exit_code=exit_code)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class ExecutionContext:
    """Mutable state of one pipeline execution."""
    workspace_id: str
    cwd: str = ROOT
    env: Dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    started_at: float = field(default_factory=time.monotonic)
    last_exit_code: int = 0
    deadline: Optional[float] = None

    def __post_init__(self):
        if self.deadline is None:
            self.deadline = self.started_at + self.timeout

    def check_deadline(self) -> None:
        """Raise ShellTimeout once the deadline has passed."""
        if time.monotonic() > self.deadline:
            raise ShellTimeout()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def display_cwd(self) -> str:
        return display_path(self.cwd)

    def change_directory(self, path: str) -> None:
        self.cwd = path
        self.env['PWD'] = self.display_cwd
