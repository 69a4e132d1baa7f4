#!/usr/bin/env python3
"""
Command execution and terminal front end for wshell.

This module drives a command line from raw text to a captured result:
segments are run in order with short-circuit operators, pipe stages feed
each other's stdout, and redirections are applied after each command.

Design Principles:
- All commands go through the BuiltinCommands dispatch table
- Clean separation between parsing and execution
- One ExecutionContext per invocation, passed explicitly
- Timeouts are checked between steps, never by cancelling I/O
"""

import sys
import asyncio
import logging
from typing import Optional, List, Dict, Tuple

from .command_parser import (
    CommandParser, RedirectType, Redirect, has_pipe, split_pipes, split_assignment
)
from .commands import BuiltinCommands
from .context import (
    ExecutionContext, ShellConfig, ShellResult, ShellTimeout, TIMEOUT_MESSAGE
)
from .workspace import (
    WorkspaceStore, WorkspaceError, MemoryWorkspace, DirectoryWorkspace,
    ROOT, normalize_path
)

logger = logging.getLogger(__name__)

DEV_NULL = '/dev/null'

STDOUT = ('stream', 1)
STDERR = ('stream', 2)


class CommandExecutor:
    """
    Executes command lines against a workspace.

    The executor owns the parser and the builtin table; all per-call state
    lives in the ExecutionContext handed to run().
    """

    def __init__(self, store: WorkspaceStore, config: Optional[ShellConfig] = None):
        self.store = store
        self.config = config or ShellConfig()
        self.parser = CommandParser()
        self.commands = BuiltinCommands(store, runner=self.run_single, config=self.config)

    async def run(self, command_line: str, ctx: ExecutionContext) -> ShellResult:
        """Execute a full line and return the result of the last segment run."""
        result = ShellResult()

        for segment in self.parser.parse(command_line):
            ctx.check_deadline()
            logger.debug("segment %r (operator %r)", segment.command, segment.operator)

            if has_pipe(segment.command):
                result = await self.run_pipe(segment.command, ctx)
            else:
                result = await self.run_single(segment.command, ctx)
            ctx.last_exit_code = result.exit_code

            # The operator after a segment decides whether the rest runs
            if segment.operator == '&&' and not result.ok:
                break
            if segment.operator == '||' and result.ok:
                break

        return result

    async def run_pipe(self, text: str, ctx: ExecutionContext) -> ShellResult:
        """Execute pipe stages left to right, feeding stdout into stdin."""
        result = ShellResult()
        stdin = ''
        for stage in split_pipes(text):
            ctx.check_deadline()
            result = await self.run_single(stage, ctx, stdin)
            stdin = result.stdout
        return result

    async def run_single(self, text: str, ctx: ExecutionContext, stdin: str = '') -> ShellResult:
        """Execute one command without pipes or operators."""
        ctx.check_deadline()
        command = self.parser.parse_simple(text, ctx.env, ctx.last_exit_code)
        logger.debug("command %s (redirects: %d)", command, len(command.redirects))

        if not command.name:
            result = ShellResult()
        else:
            tokens = [command.name] + command.args
            assignments = [split_assignment(token) for token in tokens]
            if all(assignments):
                for name, value in assignments:
                    ctx.env[name] = value
                result = ShellResult()
            else:
                result = await self.commands.dispatch(command.name, command.args, ctx, stdin)

        if command.redirects:
            result = await self._apply_redirections(result, command.redirects, ctx)
        return result

    async def _apply_redirections(self, result: ShellResult, redirects: List[Redirect],
                                  ctx: ExecutionContext) -> ShellResult:
        """
        Route stdout and stderr according to the redirections, left to right.

        Each stream ends up pointing at a stream, a file or /dev/null, so
        `> out.txt 2>&1` sends both streams to out.txt.
        """
        routes: Dict[int, Tuple] = {1: STDOUT, 2: STDERR}
        for redirect in redirects:
            if redirect.type == RedirectType.DUPLICATE:
                routes[redirect.fd] = routes[int(redirect.target[1])]
            elif redirect.target == DEV_NULL:
                routes[redirect.fd] = ('null',)
            else:
                path = normalize_path(redirect.target, ctx.cwd)
                routes[redirect.fd] = ('file', path, redirect.type == RedirectType.APPEND)

        outputs: Dict[Tuple, List[str]] = {}
        for fd, text in ((1, result.stdout), (2, result.stderr)):
            outputs.setdefault(routes[fd], []).append(text)

        stdout = ''.join(outputs.pop(STDOUT, []))
        stderr = ''.join(outputs.pop(STDERR, []))
        for route, texts in outputs.items():
            if route[0] != 'file':
                continue
            _, path, append = route
            content = ''.join(texts)
            try:
                if append and await self.store.file_exists(ctx.workspace_id, path):
                    content = await self.store.read_file(ctx.workspace_id, path) + content
                await self.store.write_file(ctx.workspace_id, path, content)
            except WorkspaceError as e:
                logger.debug("redirect to %s failed: %s", path, e)
                return ShellResult.failure(f"wshell: {path}: {e}")

        return ShellResult(stdout=stdout, stderr=stderr, exit_code=result.exit_code)


async def _execute(executor: CommandExecutor, command: str, ctx: ExecutionContext) -> ShellResult:
    """Run a line, turning timeouts and unexpected errors into results."""
    try:
        return await executor.run(command, ctx)
    except ShellTimeout:
        logger.warning("command timed out after %.1fs in %s: %r",
                       ctx.elapsed, ctx.workspace_id, command)
        return ShellResult.failure(TIMEOUT_MESSAGE)
    except Exception as e:
        logger.debug("command %r failed", command, exc_info=True)
        return ShellResult.failure(str(e))


async def execute_shell(command: str, workspace_id: str, env: Optional[Dict[str, str]] = None,
                        timeout: float = 30, store: Optional[WorkspaceStore] = None,
                        config: Optional[ShellConfig] = None) -> ShellResult:
    """
    Execute a command line in a workspace and capture its output.

    Args:
        command: The raw command line
        workspace_id: Workspace whose files the command sees
        env: Extra environment variables, overlaid on the defaults
        timeout: Wall-clock budget in seconds
        store: Workspace filesystem (a fresh in-memory one when omitted)
        config: Interpreter configuration

    Returns:
        ShellResult with stdout, stderr and exit code. Never raises.
    """
    config = config or ShellConfig()
    store = store or MemoryWorkspace()

    ctx_env = config.default_env()
    ctx_env.update(env or {})
    ctx = ExecutionContext(workspace_id=workspace_id, env=ctx_env, timeout=timeout)

    return await _execute(CommandExecutor(store, config), command, ctx)


class ShellSession:
    """
    Interactive session over one workspace.

    Unlike execute_shell, the working directory and environment carry
    over from one line to the next.
    """

    def __init__(self, workspace_id: str, store: Optional[WorkspaceStore] = None,
                 config: Optional[ShellConfig] = None, timeout: Optional[float] = None):
        self.workspace_id = workspace_id
        self.config = config or ShellConfig()
        self.store = store or MemoryWorkspace()
        self.timeout = timeout or self.config.default_timeout
        self.executor = CommandExecutor(self.store, self.config)
        self.env = self.config.default_env()
        self.cwd = ROOT
        self.last_exit_code = 0

    def get_prompt(self) -> str:
        ctx = ExecutionContext(self.workspace_id, cwd=self.cwd)
        return f"{ctx.display_cwd}$ "

    async def run(self, command_line: str) -> ShellResult:
        ctx = ExecutionContext(
            workspace_id=self.workspace_id,
            cwd=self.cwd,
            env=dict(self.env),
            timeout=self.timeout,
            last_exit_code=self.last_exit_code,
        )
        result = await _execute(self.executor, command_line, ctx)
        self.env = ctx.env
        self.cwd = ctx.cwd
        self.last_exit_code = result.exit_code
        return result


def _print_result(result: ShellResult) -> None:
    if result.stdout:
        sys.stdout.write(result.stdout)
        sys.stdout.flush()
    if result.stderr:
        sys.stderr.write(result.stderr if result.stderr.endswith('\n') else result.stderr + '\n')
        sys.stderr.flush()


def run_interactive(session: ShellSession) -> int:
    """Read lines from stdin until EOF or `exit`; returns the last exit code."""
    interactive = sys.stdin.isatty()
    while True:
        try:
            line = input(session.get_prompt() if interactive else '')
        except KeyboardInterrupt:
            print("^C")
            continue
        except EOFError:
            if interactive:
                print()
            break

        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if line in ('exit', 'quit'):
            break
        _print_result(asyncio.run(session.run(line)))

    return session.last_exit_code


def main():
    """Main entry point for the wshell command line."""
    import argparse

    parser = argparse.ArgumentParser(description='wshell: a shell over workspace files')
    parser.add_argument('-c', '--command', help='Execute command and exit')
    parser.add_argument('-w', '--workspace', default='default', help='Workspace id')
    parser.add_argument('--root', help='Directory holding workspaces (in-memory when omitted)')
    parser.add_argument('-t', '--timeout', type=float, help='Timeout per command in seconds')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    config = ShellConfig()
    store = DirectoryWorkspace(args.root) if args.root else MemoryWorkspace()
    timeout = min(args.timeout or config.default_timeout, config.max_timeout)
    session = ShellSession(args.workspace, store=store, config=config, timeout=timeout)

    if args.command:
        result = asyncio.run(session.run(args.command))
        _print_result(result)
        sys.exit(result.exit_code)

    sys.exit(run_interactive(session))


if __name__ == '__main__':
    main()
