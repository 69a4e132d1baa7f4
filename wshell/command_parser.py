#!/usr/bin/env python3
"""
Command parser for the wshell interpreter.

This module turns raw command lines into the pieces the executor works with:
operator-delimited segments, pipe stages, redirections, tokens and flags.

Design Principles:
- Single responsibility: Parse commands, don't execute them
- Composable: Each parsing step is independent
- Character scanners instead of a general grammar, so quoting stays auditable
- Testable: Pure functions with predictable outputs
"""

import re
from typing import List, Dict, Optional, Tuple, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum


class RedirectType(Enum):
    """Types of output redirection."""
    WRITE = '>'       # Overwrite file
    APPEND = '>>'     # Append to file
    DUPLICATE = '>&'  # Point one stream at the other (2>&1)


@dataclass
class Redirect:
    """Represents an output redirection."""
    type: RedirectType
    target: str
    fd: int = 1  # File descriptor (1=stdout, 2=stderr)


@dataclass
class Segment:
    """
    One unit of a command line delimited by ;, && or ||.

    The operator is the one that followed this segment in the text,
    so it decides whether the *next* segment runs.
    """
    command: str
    operator: str = ''

    def __str__(self) -> str:
        return f"{self.command} {self.operator}".strip()


@dataclass
class Command:
    """A single command after expansion, redirection extraction and tokenizing."""
    name: str
    args: List[str]
    redirects: List[Redirect] = field(default_factory=list)

    def __str__(self) -> str:
        return ' '.join([self.name] + self.args)


@dataclass(frozen=True)
class FlagSpec:
    """Which short flags of a builtin take a value and which are toggles."""
    value_flags: frozenset = frozenset()
    boolean_flags: frozenset = frozenset()

    @classmethod
    def of(cls, values: str = '', booleans: str = '') -> 'FlagSpec':
        return cls(frozenset(values), frozenset(booleans))


@dataclass
class ParsedFlags:
    """Result of flag parsing: named flags plus positional operands."""
    flags: Dict[str, str]
    operands: List[str]

    def has(self, name: str) -> bool:
        return name in self.flags


# Flag grammar of each builtin that parses flags
FLAG_SPECS: Dict[str, FlagSpec] = {
    'head': FlagSpec.of(values='n'),
    'tail': FlagSpec.of(values='n'),
    'grep': FlagSpec.of(values='em', booleans='ivcnl'),
    'sort': FlagSpec.of(booleans='rnu'),
    'uniq': FlagSpec.of(booleans='c'),
    'tr': FlagSpec.of(booleans='d'),
    'cut': FlagSpec.of(values='df'),
    'awk': FlagSpec.of(values='F'),
    'ls': FlagSpec.of(booleans='la1'),
    'mkdir': FlagSpec.of(booleans='p'),
    'rm': FlagSpec.of(booleans='rf'),
    'tee': FlagSpec.of(booleans='a'),
    'base64': FlagSpec.of(booleans='d'),
    'jq': FlagSpec.of(booleans='r'),
}

WHITESPACE = ' \t'

# Characters a backslash may escape inside double quotes
DOUBLE_QUOTE_ESCAPABLE = '"\\$`'

BRACED_VARIABLE = re.compile(r'\$\{(\w+)\}')
PLAIN_VARIABLE = re.compile(r'\$(\w+)')

ASSIGNMENT = re.compile(r'^[A-Za-z_]\w*=')


def tokenize(command: str) -> List[str]:
    """
    Split a command into argv-style tokens, honoring quotes and escapes.

    Unterminated quotes are not an error: whatever was buffered is
    flushed as the last token.
    """
    tokens = []
    current = []
    in_token = False
    in_single = False
    in_double = False
    escape_next = False

    for char in command:
        if escape_next:
            if in_double and char not in DOUBLE_QUOTE_ESCAPABLE:
                current.append('\\')
            current.append(char)
            escape_next = False
            in_token = True
        elif char == '\\' and not in_single:
            escape_next = True
            in_token = True
        elif char == "'" and not in_double:
            in_single = not in_single
            in_token = True
        elif char == '"' and not in_single:
            in_double = not in_double
            in_token = True
        elif char in WHITESPACE and not in_single and not in_double:
            if in_token:
                tokens.append(''.join(current))
            current = []
            in_token = False
        else:
            current.append(char)
            in_token = True

    if escape_next:
        current.append('\\')
    if in_token:
        tokens.append(''.join(current))

    return tokens


def expand_variables(text: str, env: Mapping[str, str],
                     last_exit_code: Optional[int] = None) -> str:
    """
    Substitute ${NAME} and then $NAME from env; unknown names become ''.

    Runs on the raw line before tokenizing. Double-quoted text is
    expanded; single-quoted text and backslash-escaped characters such
    as \\$ are copied through untouched for the tokenizer.
    """
    pieces = []
    for chunk, protected in _protected_chunks(text):
        if not protected:
            if last_exit_code is not None:
                chunk = chunk.replace('$?', str(last_exit_code))
            chunk = BRACED_VARIABLE.sub(lambda m: env.get(m.group(1), ''), chunk)
            chunk = PLAIN_VARIABLE.sub(lambda m: env.get(m.group(1), ''), chunk)
        pieces.append(chunk)
    return ''.join(pieces)


def _protected_chunks(text: str) -> List[Tuple[str, bool]]:
    """Cut text into (chunk, protected) runs; quotes and backslashes stay in the chunks."""
    chunks = []
    current = []
    in_single = False
    in_double = False
    escaped = False

    for char in text:
        if escaped:
            chunks.append(('\\' + char, True))
            escaped = False
        elif char == '\\' and not in_single:
            chunks.append((''.join(current), False))
            current = []
            escaped = True
        elif char == '"' and not in_single:
            in_double = not in_double
            current.append(char)
        elif char == "'" and not in_double:
            if not in_single:
                chunks.append((''.join(current), False))
                current = [char]
                in_single = True
            else:
                current.append(char)
                chunks.append((''.join(current), True))
                current = []
                in_single = False
        else:
            current.append(char)

    if escaped:
        current.append('\\')
    if current:
        chunks.append((''.join(current), in_single))
    return chunks


def parse_flags(tokens: Iterable[str], value_flags: Iterable[str] = (),
                boolean_flags: Iterable[str] = ()) -> ParsedFlags:
    """
    Split tokens into flags and operands.

    Value flags accept ``-n 5``, ``-n5`` and, inside a cluster, ``-rn 5``.
    Everything else is recorded with an empty string so callers can test
    for presence. ``boolean_flags`` is descriptive only.
    """
    tokens = list(tokens)
    value_flags = set(value_flags)
    flags: Dict[str, str] = {}
    operands: List[str] = []

    i = 0
    while i < len(tokens):
        arg = tokens[i]

        if arg == '--':
            # End of flags marker
            operands.extend(tokens[i + 1:])
            break
        elif arg.startswith('--'):
            # Long flag
            if '=' in arg:
                key, value = arg[2:].split('=', 1)
                flags[key] = value
            else:
                flags[arg[2:]] = ''
        elif arg.startswith('-') and len(arg) > 1:
            cluster = arg[1:]
            for pos, char in enumerate(cluster):
                if char in value_flags:
                    rest = cluster[pos + 1:]
                    if rest:
                        flags[char] = rest
                    elif i + 1 < len(tokens):
                        i += 1
                        flags[char] = tokens[i]
                    else:
                        flags[char] = ''
                    break
                flags[char] = ''
        else:
            operands.append(arg)
        i += 1

    return ParsedFlags(flags=flags, operands=operands)


def parse_command_flags(name: str, tokens: Iterable[str]) -> ParsedFlags:
    """Parse tokens with the flag grammar registered for a builtin."""
    spec = FLAG_SPECS.get(name, FlagSpec())
    return parse_flags(tokens, spec.value_flags, spec.boolean_flags)


def split_operators(line: str) -> List[Segment]:
    """Split a line on ;, && and || outside quotes."""
    segments = []
    current = []
    in_single = False
    in_double = False
    escaped = False

    def flush(operator: str):
        text = ''.join(current)
        if text.strip():
            segments.append(Segment(command=text, operator=operator))
        current.clear()

    i = 0
    while i < len(line):
        char = line[i]
        pair = line[i:i + 2]

        if escaped:
            current.append(char)
            escaped = False
        elif char == '\\' and not in_single:
            escaped = True
            current.append(char)
        elif char == "'" and not in_double:
            in_single = not in_single
            current.append(char)
        elif char == '"' and not in_single:
            in_double = not in_double
            current.append(char)
        elif in_single or in_double:
            current.append(char)
        elif pair in ('&&', '||'):
            flush(pair)
            i += 2
            continue
        elif char == ';':
            flush(';')
        else:
            current.append(char)
        i += 1

    flush('')
    return segments


def _single_pipe_positions(text: str) -> List[int]:
    """Indices of '|' characters that are not part of '||'."""
    positions = []
    for i, char in enumerate(text):
        if char != '|':
            continue
        before = text[i - 1] if i > 0 else ''
        after = text[i + 1] if i + 1 < len(text) else ''
        if before != '|' and after != '|':
            positions.append(i)
    return positions


def has_pipe(text: str) -> bool:
    """True if text contains a pipe that is not part of '||'."""
    return bool(_single_pipe_positions(text))


def split_pipes(text: str) -> List[str]:
    """
    Split a segment into pipe stages.

    Quotes are not consulted here: a '|' inside quotes still splits.
    """
    stages = []
    start = 0
    for pos in _single_pipe_positions(text):
        stages.append(text[start:pos])
        start = pos + 1
    stages.append(text[start:])
    return [stage.strip() for stage in stages if stage.strip()]


def _unquoted_positions(text: str, wanted: str) -> List[int]:
    """Indices of `wanted` characters outside quotes and not escaped."""
    positions = []
    in_single = False
    in_double = False
    escaped = False
    for i, char in enumerate(text):
        if escaped:
            escaped = False
        elif char == '\\' and not in_single:
            escaped = True
        elif char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif char == wanted and not in_single and not in_double:
            positions.append(i)
    return positions


def _take_redirection(text: str) -> Optional[Tuple[str, Redirect]]:
    """Remove one trailing redirection from text, if there is one."""
    text = text.rstrip()
    positions = _unquoted_positions(text, '>')
    if not positions:
        return None

    pos = positions[-1]
    target_text = text[pos + 1:].strip()
    if target_text.startswith('&'):
        if target_text not in ('&1', '&2'):
            return None
        target = target_text
    else:
        words = tokenize(target_text)
        if len(words) != 1:
            return None
        target = words[0]

    start = pos
    redirect_type = RedirectType.WRITE
    # Append is checked before truncate
    if pos > 0 and text[pos - 1] == '>':
        start = pos - 1
        redirect_type = RedirectType.APPEND

    fd = 1
    if start > 0 and text[start - 1] in '12':
        if start == 1 or text[start - 2] in WHITESPACE:
            fd = int(text[start - 1])
            start -= 1

    if target.startswith('&'):
        redirect_type = RedirectType.DUPLICATE

    return text[:start], Redirect(type=redirect_type, target=target, fd=fd)


def extract_redirections(command_str: str) -> Tuple[str, List[Redirect]]:
    """
    Strip trailing redirections from a command string.

    Returns the cleaned command and the redirections in the order they
    appeared in the text.
    """
    redirects = []
    clean_str = command_str
    while True:
        taken = _take_redirection(clean_str)
        if taken is None:
            break
        clean_str, redirect = taken
        redirects.insert(0, redirect)
    return clean_str.strip(), redirects


def split_assignment(token: str) -> Optional[Tuple[str, str]]:
    """Split NAME=value into its parts, or None if token is not an assignment."""
    if not ASSIGNMENT.match(token):
        return None
    name, value = token.split('=', 1)
    return name, value


class CommandParser:
    """
    Parser for the supported shell syntax.

    This parser handles:
    - Command sequences (;, &&, ||)
    - Pipes (|)
    - Output redirections (>, >>, 2>, 2>&1)
    - Variable expansion ($VAR, ${VAR}, $?)
    - Quoting and escaping
    """

    def parse(self, command_line: str) -> List[Segment]:
        """
        Parse a complete command line into its segments.

        This is the main entry point for parsing shell commands.
        """
        if not command_line or not command_line.strip():
            return []
        return split_operators(command_line)

    def parse_simple(self, command_str: str, env: Optional[Mapping[str, str]] = None,
                     last_exit_code: Optional[int] = None) -> Command:
        """Parse a single command without pipes or operators."""
        expanded = expand_variables(command_str, env or {}, last_exit_code)
        clean_str, redirects = extract_redirections(expanded)
        tokens = tokenize(clean_str)
        if not tokens:
            return Command(name='', args=[], redirects=redirects)
        return Command(name=tokens[0], args=tokens[1:], redirects=redirects)
