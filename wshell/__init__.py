"""
wshell - A small POSIX-style shell over virtual workspace filesystems

This package provides a command interpreter with quoting, variables, pipes,
redirections and control operators, a table of builtin text and file
utilities, and pluggable workspace stores (in memory or on disk).
"""

__version__ = "0.1.0"

from .context import (
    ExecutionContext,
    ShellConfig,
    ShellResult,
    ShellTimeout,
)

from .workspace import (
    WorkspaceStore,
    MemoryWorkspace,
    DirectoryWorkspace,
    WorkspaceError,
    WorkspaceNotFound,
)

from .command_parser import (
    Command,
    CommandParser,
    Segment,
    Redirect,
    RedirectType,
    tokenize,
    parse_flags,
)

from .commands import (
    Builtin,
    BuiltinCommands,
)

from .terminal import (
    CommandExecutor,
    ShellSession,
    execute_shell,
)

from .tool import (
    TOOL_DEFINITION,
    run_bash_tool,
)

__all__ = [
    # Execution state
    "ExecutionContext",
    "ShellConfig",
    "ShellResult",
    "ShellTimeout",

    # Workspace filesystems
    "WorkspaceStore",
    "MemoryWorkspace",
    "DirectoryWorkspace",
    "WorkspaceError",
    "WorkspaceNotFound",

    # Parsing
    "Command",
    "CommandParser",
    "Segment",
    "Redirect",
    "RedirectType",
    "tokenize",
    "parse_flags",

    # Builtins
    "Builtin",
    "BuiltinCommands",

    # Execution
    "CommandExecutor",
    "ShellSession",
    "execute_shell",

    # Tool adapter
    "TOOL_DEFINITION",
    "run_bash_tool",
]
