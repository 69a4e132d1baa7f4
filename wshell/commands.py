#!/usr/bin/env python3
"""
Builtin commands for wshell.

Every utility the interpreter understands is a member of the Builtin
enumeration and has exactly one handler on BuiltinCommands. Handlers take
the tokenized arguments, the execution context and stdin, and return a
ShellResult. They talk to the workspace only through the WorkspaceStore
they were given, and turn its failures into their own stderr messages.
"""

import re
import json
import math
import shlex
import base64
import asyncio
import binascii
import logging
from enum import Enum
from datetime import datetime, timezone
from typing import List, Optional, Callable, Awaitable, Dict, Tuple, Any

from .command_parser import parse_command_flags, parse_flags, split_assignment
from .conditions import evaluate
from .context import ExecutionContext, ShellResult, ShellConfig
from .digest import digest as default_digest
from .workspace import (
    WorkspaceStore, WorkspaceError, ROOT, normalize_path
)

logger = logging.getLogger(__name__)

Runner = Callable[[str, ExecutionContext, str], Awaitable[ShellResult]]
Digest = Callable[[str, bytes], Awaitable[str]]

DIRECTORY_SENTINEL = '.keep'

# seq checks the deadline every this many lines
SEQ_DEADLINE_INTERVAL = 1000

# md5sum is served by SHA-1: its output is NOT interoperable with real MD5
CHECKSUM_ALGORITHMS = {
    'md5sum': 'SHA-1',
    'sha256sum': 'SHA-256',
}


class Builtin(Enum):
    """Closed set of command names the interpreter dispatches on."""
    ECHO = 'echo'
    PRINTF = 'printf'
    CAT = 'cat'
    HEAD = 'head'
    TAIL = 'tail'
    WC = 'wc'
    GREP = 'grep'
    SORT = 'sort'
    UNIQ = 'uniq'
    TR = 'tr'
    CUT = 'cut'
    SED = 'sed'
    AWK = 'awk'
    LS = 'ls'
    MKDIR = 'mkdir'
    TOUCH = 'touch'
    CP = 'cp'
    MV = 'mv'
    RM = 'rm'
    PWD = 'pwd'
    CD = 'cd'
    DATE = 'date'
    ENV = 'env'
    PRINTENV = 'printenv'
    EXPORT = 'export'
    SLEEP = 'sleep'
    SEQ = 'seq'
    TRUE = 'true'
    FALSE = 'false'
    TEST = 'test'
    BRACKET = '['
    BASE64 = 'base64'
    MD5SUM = 'md5sum'
    SHA256SUM = 'sha256sum'
    TEE = 'tee'
    BASENAME = 'basename'
    DIRNAME = 'dirname'
    XARGS = 'xargs'
    REV = 'rev'
    YES = 'yes'
    JQ = 'jq'
    WHICH = 'which'
    COMMAND = 'command'

    @classmethod
    def lookup(cls, name: str) -> Optional['Builtin']:
        try:
            return cls(name)
        except ValueError:
            return None


class CommandFailed(Exception):
    """Raised inside a handler to return an error result early."""

    def __init__(self, result: ShellResult):
        super().__init__(result.stderr)
        self.result = result


def split_lines(text: str) -> List[str]:
    """Lines of text; a trailing newline does not start an extra line."""
    if not text:
        return []
    lines = text.split('\n')
    if text.endswith('\n'):
        lines.pop()
    return lines


def join_lines(lines: List[str]) -> str:
    """Newline-terminated text from lines ('' for no lines)."""
    if not lines:
        return ''
    return '\n'.join(lines) + '\n'


def expand_char_range(s: str) -> str:
    """Expand character ranges like a-z."""
    result = []
    i = 0
    while i < len(s):
        if i + 2 < len(s) and s[i + 1] == '-':
            start, end = ord(s[i]), ord(s[i + 2])
            result.extend(chr(c) for c in range(start, end + 1))
            i += 3
        else:
            result.append(s[i])
            i += 1
    return ''.join(result)


def interpret_escapes(text: str) -> str:
    """Interpret the \\n, \\t and \\\\ escapes printf and echo -e understand."""
    out = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == '\\' and i + 1 < len(text) and text[i + 1] in 'nt\\':
            out.append({'n': '\n', 't': '\t', '\\': '\\'}[text[i + 1]])
            i += 2
        else:
            out.append(char)
            i += 1
    return ''.join(out)


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return ('%.10f' % value).rstrip('0').rstrip('.')


def parse_field_spec(spec: str) -> List[Tuple[int, Optional[int]]]:
    """Parse a field list like 1,3 or 2-4 or 3- into inclusive ranges."""
    ranges = []
    for part in spec.split(','):
        if '-' in part:
            start, end = part.split('-', 1)
            ranges.append((int(start) if start else 1, int(end) if end else None))
        else:
            ranges.append((int(part), int(part)))
    for start, end in ranges:
        if start < 1 or (end is not None and end < start):
            raise ValueError(spec)
    return ranges


def parse_sed_substitution(expr: str) -> Optional[Tuple[str, str, str]]:
    """
    Split s<d>pattern<d>replacement<d>flags into its three parts.

    A backslash before the delimiter makes it literal. Returns None for
    anything that is not a well-formed substitution.
    """
    if len(expr) < 4 or expr[0] != 's':
        return None
    delim = expr[1]
    if delim.isalnum() or delim in '\\\n ':
        return None

    parts = []
    current = []
    i = 2
    while i < len(expr) and len(parts) < 2:
        char = expr[i]
        if char == '\\' and i + 1 < len(expr):
            if expr[i + 1] == delim:
                current.append(delim)
            else:
                current.append(expr[i:i + 2])
            i += 2
            continue
        if char == delim:
            parts.append(''.join(current))
            current = []
        else:
            current.append(char)
        i += 1

    if len(parts) < 2:
        return None
    pattern, replacement = parts
    flags = expr[i:]
    if not pattern or any(f not in 'gi' for f in flags):
        return None
    return pattern, replacement, flags


def sed_replacer(replacement: str) -> Callable[['re.Match'], str]:
    """Build a re.sub callback from a sed replacement (& and \\N references)."""
    pieces: List[Any] = []
    literal = []
    i = 0
    while i < len(replacement):
        char = replacement[i]
        if char == '\\' and i + 1 < len(replacement):
            nxt = replacement[i + 1]
            if nxt.isdigit():
                pieces.append(''.join(literal))
                pieces.append(int(nxt))
                literal = []
            elif nxt == 'n':
                literal.append('\n')
            elif nxt == 't':
                literal.append('\t')
            else:
                literal.append(nxt)
            i += 2
            continue
        if char == '&':
            pieces.append(''.join(literal))
            pieces.append(0)
            literal = []
        else:
            literal.append(char)
        i += 1
    pieces.append(''.join(literal))

    def replace(match):
        out = []
        for piece in pieces:
            if isinstance(piece, int):
                try:
                    out.append(match.group(piece) or '')
                except IndexError:
                    out.append('')
            else:
                out.append(piece)
        return ''.join(out)

    return replace


AWK_FIELD = re.compile(r'\$(\d+|NF)')
AWK_UNSUPPORTED = "awk: only basic {print $N} patterns supported"


def parse_awk_print(program: str) -> Optional[List[Tuple[str, str]]]:
    """
    Parse `{print ITEM, ITEM ...}` into a list of (kind, value) items.

    Kinds are 'field', 'var', 'str' and 'sep' (a comma). Returns None for
    any other program.
    """
    program = program.strip()
    if not (program.startswith('{') and program.endswith('}')):
        return None
    body = program[1:-1].strip().rstrip(';').strip()
    if body != 'print' and not body.startswith(('print ', 'print\t', 'print$')):
        return None

    items = []
    text = body[len('print'):]
    i = 0
    while i < len(text):
        char = text[i]
        if char in ' \t':
            i += 1
        elif char == ',':
            items.append(('sep', ','))
            i += 1
        elif char == '"':
            end = i + 1
            chunk = []
            while end < len(text) and text[end] != '"':
                if text[end] == '\\' and end + 1 < len(text):
                    chunk.append(interpret_escapes(text[end:end + 2]).replace('\\"', '"'))
                    end += 2
                    continue
                chunk.append(text[end])
                end += 1
            if end >= len(text):
                return None
            items.append(('str', ''.join(chunk)))
            i = end + 1
        elif char == '$':
            match = AWK_FIELD.match(text, i)
            if not match:
                return None
            items.append(('field', match.group(1)))
            i = match.end()
        elif text.startswith('NR', i) or text.startswith('NF', i):
            items.append(('var', text[i:i + 2]))
            i += 2
        else:
            return None
    return items or [('field', '0')]


class BuiltinCommands:
    """
    Dispatch table for the builtin utilities.

    Each public coroutine below implements one command. The table is
    built from the Builtin enumeration, so adding a member without a
    handler fails at construction time.
    """

    def __init__(self, store: WorkspaceStore, runner: Optional[Runner] = None,
                 config: Optional[ShellConfig] = None, digest: Digest = default_digest):
        self.store = store
        self.runner = runner
        self.config = config or ShellConfig()
        self.digest = digest
        self._handlers: Dict[Builtin, Callable] = {
            Builtin.ECHO: self.echo,
            Builtin.PRINTF: self.printf,
            Builtin.CAT: self.cat,
            Builtin.HEAD: self.head,
            Builtin.TAIL: self.tail,
            Builtin.WC: self.wc,
            Builtin.GREP: self.grep,
            Builtin.SORT: self.sort,
            Builtin.UNIQ: self.uniq,
            Builtin.TR: self.tr,
            Builtin.CUT: self.cut,
            Builtin.SED: self.sed,
            Builtin.AWK: self.awk,
            Builtin.LS: self.ls,
            Builtin.MKDIR: self.mkdir,
            Builtin.TOUCH: self.touch,
            Builtin.CP: self.cp,
            Builtin.MV: self.mv,
            Builtin.RM: self.rm,
            Builtin.PWD: self.pwd,
            Builtin.CD: self.cd,
            Builtin.DATE: self.date,
            Builtin.ENV: self.env,
            Builtin.PRINTENV: self.env,
            Builtin.EXPORT: self.export,
            Builtin.SLEEP: self.sleep,
            Builtin.SEQ: self.seq,
            Builtin.TRUE: self.true,
            Builtin.FALSE: self.false,
            Builtin.TEST: self.test,
            Builtin.BRACKET: self.bracket,
            Builtin.BASE64: self.base64,
            Builtin.MD5SUM: self.checksum,
            Builtin.SHA256SUM: self.checksum,
            Builtin.TEE: self.tee,
            Builtin.BASENAME: self.basename,
            Builtin.DIRNAME: self.dirname,
            Builtin.XARGS: self.xargs,
            Builtin.REV: self.rev,
            Builtin.YES: self.yes,
            Builtin.JQ: self.jq,
            Builtin.WHICH: self.which,
            Builtin.COMMAND: self.which,
        }
        missing = set(Builtin) - set(self._handlers)
        if missing:
            raise RuntimeError(f"Builtins without a handler: {sorted(b.value for b in missing)}")

    async def dispatch(self, name: str, args: List[str], ctx: ExecutionContext,
                       stdin: str = '') -> ShellResult:
        """Run the builtin called `name`; unknown names exit with 127."""
        builtin = Builtin.lookup(name)
        if builtin is None:
            return self._not_found(name)

        try:
            return await self._handlers[builtin](builtin, args, ctx, stdin)
        except CommandFailed as e:
            return e.result
        except WorkspaceError as e:
            logger.debug("%s: workspace error in %s: %s", name, ctx.workspace_id, e)
            return ShellResult.failure(f"{name}: {e}")

    def _not_found(self, name: str) -> ShellResult:
        available = ', '.join(b.value for b in Builtin)
        return ShellResult.failure(
            f"{name}: command not found. Available: {available}. "
            f"For complex logic, use the \"{self.config.fallback_tool}\" tool instead.",
            127,
        )

    # Workspace helpers

    def _path(self, ctx: ExecutionContext, path: str) -> str:
        return normalize_path(path, ctx.cwd)

    async def _read(self, ctx: ExecutionContext, path: str) -> Optional[str]:
        """Read a file, returning None when it does not exist."""
        try:
            return await self.store.read_file(ctx.workspace_id, self._path(ctx, path))
        except WorkspaceError:
            return None

    async def _input(self, name: str, ctx: ExecutionContext, operand: Optional[str],
                     stdin: str) -> str:
        """Text of the operand file, or stdin when there is no operand."""
        if operand is None or operand == '-':
            return stdin
        content = await self._read(ctx, operand)
        if content is None:
            raise CommandFailed(ShellResult.failure(f"{name}: {operand}: No such file or directory"))
        return content

    async def _is_dir(self, ctx: ExecutionContext, path: str) -> bool:
        try:
            await self.store.list_files(ctx.workspace_id, path)
            return True
        except WorkspaceError:
            return False

    # Output

    async def echo(self, builtin, args, ctx, stdin):
        """Display a line of text. Leading -n drops the newline, -e interprets escapes."""
        newline = True
        escapes = False
        while args and re.fullmatch(r'-[ne]+', args[0]):
            newline = newline and 'n' not in args[0]
            escapes = escapes or 'e' in args[0]
            args = args[1:]
        text = ' '.join(args)
        if escapes:
            text = interpret_escapes(text)
        return ShellResult.success(text + ('\n' if newline else ''))

    async def printf(self, builtin, args, ctx, stdin):
        """Format text with %s and %d; \\n and \\t are the only escapes."""
        if not args:
            return ShellResult.success('')
        fmt, values = args[0], args[1:]
        out = []
        index = 0
        i = 0
        while i < len(fmt):
            spec = fmt[i:i + 2]
            if spec in ('%s', '%d'):
                out.append(values[index] if index < len(values) else '')
                index += 1
                i += 2
            elif spec == '%%':
                out.append('%')
                i += 2
            else:
                out.append(fmt[i])
                i += 1
        return ShellResult.success(interpret_escapes(''.join(out)))

    # File reading

    async def cat(self, builtin, args, ctx, stdin):
        """Concatenate files; no operand or '-' reads stdin."""
        if not args:
            return ShellResult.success(stdin)
        parts = []
        for path in args:
            parts.append(await self._input('cat', ctx, path, stdin))
        return ShellResult.success(''.join(parts))

    def _line_count(self, name: str, args: List[str]) -> Tuple[int, List[str]]:
        # head -5 is shorthand for head -n 5
        rest = []
        count = None
        for arg in args:
            if count is None and re.fullmatch(r'-\d+', arg):
                count = arg[1:]
            else:
                rest.append(arg)
        parsed = parse_command_flags(name, rest)
        count = parsed.flags.get('n', count if count is not None else '10')
        try:
            return int(count), parsed.operands
        except ValueError:
            raise CommandFailed(ShellResult.failure(f"{name}: invalid number of lines: '{count}'"))

    async def head(self, builtin, args, ctx, stdin):
        """Output the first -n COUNT lines (default 10)."""
        count, operands = self._line_count('head', args)
        text = await self._input('head', ctx, operands[0] if operands else None, stdin)
        return ShellResult.success(join_lines(split_lines(text)[:max(count, 0)]))

    async def tail(self, builtin, args, ctx, stdin):
        """Output the last -n COUNT lines (default 10)."""
        count, operands = self._line_count('tail', args)
        text = await self._input('tail', ctx, operands[0] if operands else None, stdin)
        lines = split_lines(text)
        return ShellResult.success(join_lines(lines[-count:] if count > 0 else []))

    # Text processing

    async def wc(self, builtin, args, ctx, stdin):
        """Print `lines words chars`, or only the counts selected with -l -w -c."""
        parsed = parse_flags(args, boolean_flags='lwc')
        operands = parsed.operands
        text = await self._input('wc', ctx, operands[0] if operands else None, stdin)

        lines = text.count('\n') + (1 if text and not text.endswith('\n') else 0)
        counts = {'l': lines, 'w': len(text.split()), 'c': len(text)}
        selected = [key for key in 'lwc' if parsed.has(key)] or ['l', 'w', 'c']
        return ShellResult.success(' '.join(str(counts[key]) for key in selected) + '\n')

    async def grep(self, builtin, args, ctx, stdin):
        """Print lines matching a pattern; no match exits 1 with no output."""
        parsed = parse_command_flags('grep', args)
        operands = list(parsed.operands)
        if parsed.has('e'):
            pattern = parsed.flags['e']
        elif operands:
            pattern = operands.pop(0)
        else:
            return ShellResult.failure('grep: no pattern given', 2)

        try:
            regex = re.compile(pattern, re.IGNORECASE if parsed.has('i') else 0)
        except re.error as e:
            return ShellResult.failure(f"grep: invalid regex: {e}", 2)

        invert = parsed.has('v')
        limit = None
        if parsed.has('m'):
            try:
                limit = int(parsed.flags['m'])
            except ValueError:
                return ShellResult.failure(f"grep: invalid max count '{parsed.flags['m']}'", 2)

        sources = operands or [None]
        show_names = len(sources) > 1
        out = []
        total = 0
        for source in sources:
            try:
                text = await self._input('grep', ctx, source, stdin)
            except CommandFailed as e:
                return ShellResult.failure(e.result.stderr, 2)
            label = source if source is not None else '(standard input)'

            matches = []
            for number, line in enumerate(split_lines(text), 1):
                if limit is not None and len(matches) >= limit:
                    break
                if (regex.search(line) is not None) != invert:
                    matches.append((number, line))
            total += len(matches)

            if parsed.has('l'):
                if matches:
                    out.append(label)
            elif parsed.has('c'):
                out.append(f"{label}:{len(matches)}" if show_names else str(len(matches)))
            else:
                for number, line in matches:
                    prefix = f"{label}:" if show_names else ''
                    if parsed.has('n'):
                        prefix += f"{number}:"
                    out.append(prefix + line)

        if total == 0:
            return ShellResult(exit_code=1)
        return ShellResult.success(join_lines(out))

    async def sort(self, builtin, args, ctx, stdin):
        """Sort lines: -n numeric, -r reverse, -u unique."""
        parsed = parse_command_flags('sort', args)
        operands = parsed.operands
        text = await self._input('sort', ctx, operands[0] if operands else None, stdin)
        lines = [line for line in split_lines(text) if line]

        if parsed.has('n'):
            def key_func(line):
                match = re.match(r'\s*[-+]?(\d+\.?\d*|\.\d+)', line)
                return float(match.group(0)) if match else 0.0
            lines.sort(key=key_func)
        else:
            lines.sort()
        if parsed.has('r'):
            lines.reverse()
        if parsed.has('u'):
            lines = list(dict.fromkeys(lines))
        return ShellResult.success(join_lines(lines))

    async def uniq(self, builtin, args, ctx, stdin):
        """Drop consecutive duplicate lines; -c prefixes occurrence counts."""
        parsed = parse_command_flags('uniq', args)
        operands = parsed.operands
        text = await self._input('uniq', ctx, operands[0] if operands else None, stdin)

        groups: List[List[Any]] = []
        for line in split_lines(text):
            if groups and groups[-1][0] == line:
                groups[-1][1] += 1
            else:
                groups.append([line, 1])

        if parsed.has('c'):
            return ShellResult.success(join_lines([f"{count:7} {line}" for line, count in groups]))
        return ShellResult.success(join_lines([line for line, _ in groups]))

    async def tr(self, builtin, args, ctx, stdin):
        """Translate characters of stdin, or delete them with -d."""
        parsed = parse_command_flags('tr', args)
        operands = parsed.operands
        if not operands:
            return ShellResult.failure('tr: missing operand')

        set1 = expand_char_range(interpret_escapes(operands[0]))
        if parsed.has('d'):
            return ShellResult.success(''.join(c for c in stdin if c not in set1))

        if len(operands) < 2:
            return ShellResult.failure(f"tr: missing operand after '{operands[0]}'")
        set2 = expand_char_range(interpret_escapes(operands[1]))
        if not set2:
            return ShellResult.failure('tr: when not truncating set1, string2 must be non-empty')

        # Pad set2 with its last character
        if len(set2) < len(set1):
            set2 += set2[-1] * (len(set1) - len(set2))
        table = {}
        for src, dst in zip(set1, set2):
            table.setdefault(ord(src), dst)
        return ShellResult.success(stdin.translate(table))

    async def cut(self, builtin, args, ctx, stdin):
        """Select fields: -d DELIM -f LIST (1-based, comma separated, ranges allowed)."""
        parsed = parse_command_flags('cut', args)
        delimiter = parsed.flags.get('d', '\t')
        if len(delimiter) != 1:
            return ShellResult.failure('cut: the delimiter must be a single character')
        try:
            ranges = parse_field_spec(parsed.flags.get('f', '1'))
        except ValueError:
            return ShellResult.failure(f"cut: invalid field list: '{parsed.flags.get('f')}'")

        operands = parsed.operands
        text = await self._input('cut', ctx, operands[0] if operands else None, stdin)
        out = []
        for line in split_lines(text):
            if delimiter not in line:
                out.append(line)
                continue
            parts = line.split(delimiter)
            selected = [
                part for index, part in enumerate(parts, 1)
                if any(start <= index and (end is None or index <= end) for start, end in ranges)
            ]
            out.append(delimiter.join(selected))
        return ShellResult.success(join_lines(out))

    async def sed(self, builtin, args, ctx, stdin):
        """Apply one s/pattern/replacement/[gi] substitution to each line."""
        parsed = parse_flags(args, value_flags='e')
        operands = list(parsed.operands)
        if parsed.has('e'):
            expr = parsed.flags['e']
        elif operands:
            expr = operands.pop(0)
        else:
            return ShellResult.failure('sed: no expression given')

        substitution = parse_sed_substitution(expr)
        if substitution is None:
            return ShellResult.failure(f"sed: unsupported expression: {expr}")
        pattern, replacement, flags = substitution
        try:
            regex = re.compile(pattern, re.IGNORECASE if 'i' in flags else 0)
        except re.error as e:
            return ShellResult.failure(f"sed: invalid regex: {e}")

        text = await self._input('sed', ctx, operands[0] if operands else None, stdin)
        count = 0 if 'g' in flags else 1
        replace = sed_replacer(replacement)
        lines = [regex.sub(replace, line, count=count) for line in split_lines(text)]
        if text.endswith('\n'):
            return ShellResult.success(join_lines(lines))
        return ShellResult.success('\n'.join(lines))

    async def awk(self, builtin, args, ctx, stdin):
        """Run a `{print $N ...}` program; -F sets the field separator."""
        parsed = parse_command_flags('awk', args)
        operands = list(parsed.operands)
        if not operands:
            return ShellResult.failure(AWK_UNSUPPORTED)
        items = parse_awk_print(operands.pop(0))
        if items is None:
            return ShellResult.failure(AWK_UNSUPPORTED)

        separator = parsed.flags.get('F', ' ')
        text = await self._input('awk', ctx, operands[0] if operands else None, stdin)
        out = []
        for number, line in enumerate(split_lines(text), 1):
            fields = line.split() if separator in (' ', '') else line.split(separator)
            pieces = []
            for kind, value in items:
                if kind == 'sep':
                    pieces.append(' ')
                elif kind == 'str':
                    pieces.append(value)
                elif kind == 'var':
                    pieces.append(str(number if value == 'NR' else len(fields)))
                else:
                    index = len(fields) if value == 'NF' else int(value)
                    if index == 0:
                        pieces.append(line)
                    elif index <= len(fields):
                        pieces.append(fields[index - 1])
            out.append(''.join(pieces))
        return ShellResult.success(join_lines(out))

    # Filesystem

    async def ls(self, builtin, args, ctx, stdin):
        """List a directory: -a shows dotfiles, -l / -1 print one entry per line."""
        parsed = parse_command_flags('ls', args)
        target = parsed.operands[0] if parsed.operands else '.'
        path = self._path(ctx, target)
        try:
            entries = await self.store.list_files(ctx.workspace_id, path)
        except WorkspaceError:
            if await self.store.file_exists(ctx.workspace_id, path):
                return ShellResult.success(target + '\n')
            return ShellResult.failure(f"ls: cannot access '{target}': No such file or directory", 2)

        if not parsed.has('a'):
            entries = [entry for entry in entries if not entry.startswith('.')]
        if not entries:
            return ShellResult.success('')
        if parsed.has('1') or parsed.has('l'):
            return ShellResult.success(join_lines(entries))
        return ShellResult.success('  '.join(entries) + '\n')

    async def mkdir(self, builtin, args, ctx, stdin):
        """Create directories by writing a sentinel file inside them."""
        parsed = parse_command_flags('mkdir', args)
        if not parsed.operands:
            return ShellResult.failure('mkdir: missing operand')
        for directory in parsed.operands:
            path = self._path(ctx, directory)
            if await self._is_dir(ctx, path):
                if parsed.has('p'):
                    continue
                return ShellResult.failure(f"mkdir: cannot create directory '{directory}': File exists")
            try:
                await self.store.write_file(ctx.workspace_id, f"{path}/{DIRECTORY_SENTINEL}", '')
            except WorkspaceError as e:
                return ShellResult.failure(f"mkdir: cannot create directory '{directory}': {e}")
        return ShellResult.success()

    async def touch(self, builtin, args, ctx, stdin):
        """Create empty files that do not exist yet."""
        if not args:
            return ShellResult.failure('touch: missing file operand')
        for name in args:
            path = self._path(ctx, name)
            if await self.store.file_exists(ctx.workspace_id, path) or await self._is_dir(ctx, path):
                continue
            await self.store.write_file(ctx.workspace_id, path, '')
        return ShellResult.success()

    async def _copy(self, name: str, args: List[str], ctx: ExecutionContext) -> Tuple[str, str]:
        operands = parse_flags(args).operands
        if len(operands) < 2:
            raise CommandFailed(ShellResult.failure(f"{name}: missing operands"))
        src, dst = operands[0], operands[1]
        src_path = self._path(ctx, src)
        content = await self._read(ctx, src)
        if content is None:
            raise CommandFailed(ShellResult.failure(f"{name}: cannot stat '{src}': No such file or directory"))

        dst_path = self._path(ctx, dst)
        if await self._is_dir(ctx, dst_path):
            base = src_path.rsplit('/', 1)[-1]
            dst_path = base if dst_path == ROOT else f"{dst_path}/{base}"
        await self.store.write_file(ctx.workspace_id, dst_path, content)
        return src_path, dst_path

    async def cp(self, builtin, args, ctx, stdin):
        """Copy a file."""
        await self._copy('cp', args, ctx)
        return ShellResult.success()

    async def mv(self, builtin, args, ctx, stdin):
        """Move a file."""
        src_path, dst_path = await self._copy('mv', args, ctx)
        if src_path != dst_path:
            await self.store.delete_file(ctx.workspace_id, src_path)
        return ShellResult.success()

    async def _remove_tree(self, ctx: ExecutionContext, path: str) -> None:
        for entry in await self.store.list_files(ctx.workspace_id, path):
            child = f"{path}/{entry.rstrip('/')}"
            if entry.endswith('/'):
                await self._remove_tree(ctx, child)
            else:
                await self.store.delete_file(ctx.workspace_id, child)
        await self.store.delete_file(ctx.workspace_id, path)

    async def rm(self, builtin, args, ctx, stdin):
        """Remove files; -r removes directories, -f ignores missing files."""
        parsed = parse_command_flags('rm', args)
        force = parsed.has('f')
        if not parsed.operands and not force:
            return ShellResult.failure('rm: missing operand')

        for name in parsed.operands:
            path = self._path(ctx, name)
            if path == ROOT:
                return ShellResult.failure(f"rm: refusing to remove '{name}'")
            if await self.store.file_exists(ctx.workspace_id, path):
                await self.store.delete_file(ctx.workspace_id, path)
            elif await self._is_dir(ctx, path):
                if not parsed.has('r'):
                    return ShellResult.failure(f"rm: cannot remove '{name}': Is a directory")
                await self._remove_tree(ctx, path)
            elif not force:
                return ShellResult.failure(f"rm: cannot remove '{name}': No such file or directory")
        return ShellResult.success()

    async def pwd(self, builtin, args, ctx, stdin):
        """Print the working directory under /workspace."""
        return ShellResult.success(ctx.display_cwd + '\n')

    async def cd(self, builtin, args, ctx, stdin):
        """Change directory; no argument returns to the workspace root."""
        target = args[0] if args else self.config.home
        path = normalize_path(target, ctx.cwd)
        if path != ROOT and not await self._is_dir(ctx, path):
            return ShellResult.failure(f"cd: {target}: No such file or directory")
        ctx.change_directory(path)
        return ShellResult.success()

    # Utilities

    async def date(self, builtin, args, ctx, stdin):
        """Print the current UTC time as ISO-8601, or with a +FORMAT."""
        now = datetime.now(timezone.utc)
        if args and args[0].startswith('+'):
            return ShellResult.success(now.strftime(args[0][1:]) + '\n')
        stamp = now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')
        return ShellResult.success(stamp + '\n')

    async def env(self, builtin, args, ctx, stdin):
        """Print the environment; `printenv NAME` prints one variable."""
        if builtin is Builtin.PRINTENV and args:
            if args[0] not in ctx.env:
                return ShellResult.failure('')
            return ShellResult.success(ctx.env[args[0]] + '\n')
        return ShellResult.success(join_lines([f"{k}={v}" for k, v in ctx.env.items()]))

    async def export(self, builtin, args, ctx, stdin):
        """Set NAME=value pairs in the environment."""
        if not args:
            return await self.env(Builtin.ENV, [], ctx, stdin)
        for arg in args:
            if '=' not in arg:
                continue
            assignment = split_assignment(arg)
            if assignment is None:
                return ShellResult.failure(f"export: `{arg}': not a valid identifier")
            name, value = assignment
            ctx.env[name] = value
        return ShellResult.success()

    async def sleep(self, builtin, args, ctx, stdin):
        """Pause, capped at the configured maximum."""
        raw = args[0] if args else '0'
        try:
            seconds = float(raw)
        except ValueError:
            return ShellResult.failure(f"sleep: invalid time interval '{raw}'")
        if seconds < 0 or not math.isfinite(seconds):
            return ShellResult.failure(f"sleep: invalid time interval '{raw}'")
        await asyncio.sleep(min(seconds, self.config.max_sleep))
        return ShellResult.success()

    async def seq(self, builtin, args, ctx, stdin):
        """Print a sequence: END, START END or START STEP END."""
        if not args:
            return ShellResult.failure('seq: missing operand')
        numbers = []
        for arg in args[:3]:
            try:
                number = float(arg)
            except ValueError:
                number = math.nan
            if not math.isfinite(number):
                return ShellResult.failure(f"seq: invalid floating point argument: '{arg}'")
            numbers.append(number)

        start, step = 1.0, 1.0
        if len(numbers) == 1:
            end = numbers[0]
        elif len(numbers) == 2:
            start, end = numbers
        else:
            start, step, end = numbers
        if step == 0:
            return ShellResult.failure(f"seq: invalid Zero increment value: '{args[1]}'")

        out = []
        i = 0
        value = start
        while (value <= end) if step > 0 else (value >= end):
            out.append(format_number(value))
            i += 1
            if i % SEQ_DEADLINE_INTERVAL == 0:
                ctx.check_deadline()
            value = start + i * step
        return ShellResult.success(join_lines(out))

    async def true(self, builtin, args, ctx, stdin):
        return ShellResult.success()

    async def false(self, builtin, args, ctx, stdin):
        return ShellResult.failure('', 1)

    async def test(self, builtin, args, ctx, stdin):
        return await evaluate(args, ctx, self.store)

    async def bracket(self, builtin, args, ctx, stdin):
        if not args or args[-1] != ']':
            return ShellResult.failure("[: missing `]'", 2)
        return await evaluate(args[:-1], ctx, self.store)

    async def base64(self, builtin, args, ctx, stdin):
        """Base64 encode input, or decode it with -d / --decode."""
        parsed = parse_command_flags('base64', args)
        operands = parsed.operands
        text = await self._input('base64', ctx, operands[0] if operands else None, stdin)

        if parsed.has('d') or parsed.has('decode'):
            try:
                decoded = base64.b64decode(''.join(text.split()), validate=True)
            except (binascii.Error, ValueError):
                return ShellResult.failure('base64: invalid input')
            return ShellResult.success(decoded.decode('utf-8', errors='replace'))
        return ShellResult.success(base64.b64encode(text.encode('utf-8')).decode('ascii') + '\n')

    async def checksum(self, builtin, args, ctx, stdin):
        """Print a hex digest and the input name, like md5sum/sha256sum."""
        name = builtin.value
        text = await self._input(name, ctx, args[0] if args else None, stdin)
        hex_digest = await self.digest(CHECKSUM_ALGORITHMS[name], text.encode('utf-8'))
        return ShellResult.success(f"{hex_digest}  {args[0] if args else '-'}\n")

    async def tee(self, builtin, args, ctx, stdin):
        """Copy stdin to each named file and to stdout; -a appends."""
        parsed = parse_command_flags('tee', args)
        errors = []
        for name in parsed.operands:
            path = self._path(ctx, name)
            content = stdin
            if parsed.has('a'):
                content = (await self._read(ctx, name) or '') + stdin
            try:
                await self.store.write_file(ctx.workspace_id, path, content)
            except WorkspaceError as e:
                errors.append(f"tee: {name}: {e}")
        if errors:
            return ShellResult(stdout=stdin, stderr='\n'.join(errors), exit_code=1)
        return ShellResult.success(stdin)

    async def basename(self, builtin, args, ctx, stdin):
        """Strip directories and an optional suffix from a path."""
        if not args:
            return ShellResult.failure('basename: missing operand')
        stripped = args[0].rstrip('/')
        if not stripped:
            return ShellResult.success('/\n' if args[0] else '\n')
        base = stripped.rsplit('/', 1)[-1]
        if len(args) > 1 and args[1] and base != args[1] and base.endswith(args[1]):
            base = base[:-len(args[1])]
        return ShellResult.success(base + '\n')

    async def dirname(self, builtin, args, ctx, stdin):
        """Strip the last component from a path."""
        if not args:
            return ShellResult.failure('dirname: missing operand')
        stripped = args[0].rstrip('/')
        if '/' not in stripped:
            return ShellResult.success(('/' if args[0].startswith('/') else '.') + '\n')
        parent = stripped.rsplit('/', 1)[0].rstrip('/')
        return ShellResult.success((parent or '/') + '\n')

    async def xargs(self, builtin, args, ctx, stdin):
        """Append stdin lines to a command line and run it once."""
        if self.runner is None:
            return ShellResult.failure('xargs: command execution unavailable')
        command = args or ['echo']
        items = [line for line in stdin.strip().split('\n') if line]
        line = ' '.join([shlex.quote(arg) for arg in command] + items)
        return await self.runner(line, ctx, '')

    async def rev(self, builtin, args, ctx, stdin):
        """Reverse the characters of every line."""
        text = await self._input('rev', ctx, args[0] if args else None, stdin)
        return ShellResult.success('\n'.join(line[::-1] for line in text.split('\n')))

    async def yes(self, builtin, args, ctx, stdin):
        """Repeat a word (default y) a bounded number of times."""
        word = ' '.join(args) if args else 'y'
        return ShellResult.success(join_lines([word] * self.config.yes_lines))

    async def jq(self, builtin, args, ctx, stdin):
        """Query JSON with paths (.a.b, .[0]), keys, length and | chains."""
        parsed = parse_command_flags('jq', args)
        operands = parsed.operands
        expr = operands[0] if operands else '.'
        text = await self._input('jq', ctx, operands[1] if len(operands) > 1 else None, stdin)

        try:
            value = json.loads(text.strip())
        except json.JSONDecodeError as e:
            return ShellResult.failure(f"jq: parse error: {e}")

        try:
            for stage in expr.split('|'):
                value = apply_jq_filter(stage.strip(), value)
        except JqError as e:
            return ShellResult.failure(f"jq: error: {e}")

        if parsed.has('r') and isinstance(value, str):
            return ShellResult.success(value + '\n')
        return ShellResult.success(json.dumps(value, indent=2, ensure_ascii=False) + '\n')

    async def which(self, builtin, args, ctx, stdin):
        """Report a pseudo path for builtins."""
        targets = [arg for arg in args if not arg.startswith('-')]
        target = targets[0] if targets else ''
        if Builtin.lookup(target) is not None:
            return ShellResult.success(f"/usr/bin/{target}\n")
        return ShellResult.failure(f"{builtin.value}: {target}: not found")


class JqError(Exception):
    """A jq filter could not be applied."""


JQ_COMPONENT = re.compile(r'\.(?:(\w+)|"([^"]*)")|\[\s*(?:(-?\d+)|"([^"]*)")\s*\]')


def _jq_function(name: str, value: Any) -> Any:
    if name == 'keys':
        if isinstance(value, dict):
            return sorted(value)
        if isinstance(value, list):
            return list(range(len(value)))
        raise JqError(f"{type(value).__name__} has no keys")
    if value is None:
        return 0
    if isinstance(value, bool):
        raise JqError('boolean has no length')
    if isinstance(value, (int, float)):
        return abs(value)
    return len(value)


def apply_jq_filter(expr: str, value: Any) -> Any:
    """
    Apply one jq filter stage.

    Supports `.`, `keys`, `length` and paths made of `.name`, `."name"`,
    `[N]` and `["name"]`. A `.keys` or `.length` component calls the
    function of that name.
    """
    if expr in ('', '.'):
        return value
    if expr in ('keys', 'length'):
        return _jq_function(expr, value)

    pos = 0
    # `.[0]` starts with a bare dot before the bracket
    if expr.startswith('.['):
        pos = 1
    while pos < len(expr):
        match = JQ_COMPONENT.match(expr, pos)
        if not match:
            raise JqError(f"unsupported expression: {expr}")
        name, quoted, index, bracket_key = match.groups()
        pos = match.end()

        if name in ('keys', 'length'):
            value = _jq_function(name, value)
            continue
        key = name if name is not None else quoted if quoted is not None else bracket_key
        if value is None:
            continue
        if key is not None:
            if not isinstance(value, dict):
                raise JqError(f"Cannot index {type(value).__name__} with \"{key}\"")
            value = value.get(key)
        else:
            if not isinstance(value, list):
                raise JqError(f"Cannot index {type(value).__name__} with number")
            i = int(index)
            value = value[i] if -len(value) <= i < len(value) else None
    return value
