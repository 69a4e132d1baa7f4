"""
Tool-call adapter for wshell.

Exposes the interpreter as a `bash` tool: a JSON-schema definition to hand
to a language model, and a coroutine that runs a tool call and renders the
result as a single string.
"""

from typing import Any, Dict, Optional

from .context import ShellConfig
from .terminal import execute_shell
from .workspace import WorkspaceStore

TOOL_NAME = 'bash'

TOOL_DEFINITION: Dict[str, Any] = {
    'name': TOOL_NAME,
    'description': (
        'Execute a shell command in a lightweight bash emulator. '
        'Supports common commands: echo, cat, head, tail, grep, sort, sed, awk, cut, tr, '
        'uniq, wc, ls, mkdir, cp, mv, rm, touch, pwd, cd, date, sleep, seq, jq, base64, '
        'tee, xargs, test, basename, dirname. Supports pipes (|), redirects (> >>), '
        'operators (&& || ;), and variable expansion ($VAR). '
        'Uses the workspace filesystem.'
    ),
    'input_schema': {
        'type': 'object',
        'properties': {
            'command': {
                'type': 'string',
                'description': 'The bash command to execute',
            },
            'timeout': {
                'type': 'number',
                'description': 'Timeout in seconds (default: 30, max: 120)',
            },
        },
        'required': ['command'],
    },
}


def format_output(stdout: str, stderr: str, exit_code: int) -> str:
    """Render a result the way the tool reports it back."""
    output = stdout
    if stderr:
        output += ('\n' if output else '') + stderr
    if exit_code != 0 and not stderr:
        output += f"\n[exit code: {exit_code}]"
    return output or '(no output)'


async def run_bash_tool(tool_input: Dict[str, Any], workspace_id: str,
                        store: Optional[WorkspaceStore] = None,
                        config: Optional[ShellConfig] = None) -> str:
    """Run a `bash` tool call and return its rendered output."""
    config = config or ShellConfig()
    timeout = min(tool_input.get('timeout') or config.default_timeout, config.max_timeout)
    result = await execute_shell(
        tool_input['command'], workspace_id,
        env={}, timeout=timeout, store=store, config=config,
    )
    return format_output(result.stdout, result.stderr, result.exit_code)
