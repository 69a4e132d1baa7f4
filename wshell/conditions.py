"""
Evaluator for `test` and `[` expressions.

Supports the one, two and three argument forms plus a leading `!`.
There is no -a/-o and no grouping.
"""

import math
from typing import List

from .context import ExecutionContext, ShellResult
from .workspace import WorkspaceStore, WorkspaceError, normalize_path

TRUE = ShellResult(exit_code=0)
FALSE = ShellResult(exit_code=1)

STRING_OPERATORS = {
    '=': lambda a, b: a == b,
    '==': lambda a, b: a == b,
    '!=': lambda a, b: a != b,
}

NUMERIC_OPERATORS = {
    '-eq': lambda a, b: a == b,
    '-ne': lambda a, b: a != b,
    '-lt': lambda a, b: a < b,
    '-le': lambda a, b: a <= b,
    '-gt': lambda a, b: a > b,
    '-ge': lambda a, b: a >= b,
}


def to_number(text: str) -> float:
    """Coerce an operand to a number; anything unparsable is NaN."""
    text = text.strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def _truth(value: bool) -> ShellResult:
    return TRUE if value else FALSE


async def _is_directory(store: WorkspaceStore, ctx: ExecutionContext, path: str) -> bool:
    # A directory exists if it can be listed
    try:
        await store.list_files(ctx.workspace_id, normalize_path(path, ctx.cwd))
        return True
    except WorkspaceError:
        return False


async def evaluate(args: List[str], ctx: ExecutionContext, store: WorkspaceStore) -> ShellResult:
    """Evaluate a test expression; exit code 0 means true."""
    if not args:
        return FALSE

    if len(args) == 1:
        return _truth(args[0] != '')

    if len(args) == 2:
        op, operand = args
        if op in ('-f', '-e'):
            path = normalize_path(operand, ctx.cwd)
            return _truth(await store.file_exists(ctx.workspace_id, path))
        if op == '-d':
            return _truth(await _is_directory(store, ctx, operand))
        if op == '-z':
            return _truth(operand == '')
        if op == '-n':
            return _truth(operand != '')

    if len(args) == 3:
        left, op, right = args
        if op in STRING_OPERATORS:
            return _truth(STRING_OPERATORS[op](left, right))
        if op in NUMERIC_OPERATORS:
            return _truth(NUMERIC_OPERATORS[op](to_number(left), to_number(right)))

    if args[0] == '!':
        result = await evaluate(args[1:], ctx, store)
        return FALSE if result.ok else TRUE

    return FALSE
