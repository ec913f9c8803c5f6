#!/usr/bin/env python3
"""
strmatch: fixed-shape byte pattern compiler

Compiles compact pattern descriptions such as

    "GET " _x2 ' ' status [body]

into matchers that validate a byte string in a single linear pass and return
named captures. Patterns are built from exact literals, single-byte wildcards
(anonymous or named), fixed repetition (`x<count>`), and an optional trailing
rest capture in brackets.
"""

import argparse
import enum
import functools
import json
import operator
import re
import string
import sys
import textwrap
from collections.abc import Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from string import Template
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

__all__ = [
    "ErrorKind", "CompileError", "LexError", "ParseError",
    "CaptureError", "UnknownCaptureName", "WrongCaptureKind",
    "TokenKind", "Token", "Lexer", "tokenize",
    "Literal", "Wildcard", "Rest", "Pattern", "pattern_to_source",
    "PatternParser", "parse",
    "CaptureKind", "Op", "Step", "CompiledPattern", "Compiler", "Captures",
    "PythonEmitter", "compile_pattern", "match_bytes", "purge",
]

# =============================================================================
# Errors
# =============================================================================

class ErrorKind(enum.Enum):
    """Why a pattern was rejected."""
    # Lexer
    UNTERMINATED_LITERAL = "unterminated literal"
    INVALID_ESCAPE = "invalid escape"
    INVALID_CHAR_LITERAL = "char literal must be exactly one byte"
    INVALID_SUFFIX = "invalid literal suffix"
    UNEXPECTED_CHARACTER = "unexpected character"
    # Parser
    UNEXPECTED_TOKEN = "unexpected token"
    DUPLICATE_BINDING = "duplicate capture name"
    REST_NOT_LAST = "rest capture must be the last term"
    MULTIPLE_REST = "only one rest capture is allowed"
    BRACKET_MISMATCH = "malformed rest capture"


class CompileError(ValueError):
    """A pattern could not be compiled.

    Carries the error ``kind`` and the offset into the pattern text where the
    problem was found, so callers can build a diagnostic without re-parsing.
    """

    def __init__(self, kind: ErrorKind, position: int, detail: str = ""):
        self.kind = kind
        self.position = position
        self.detail = detail
        message = kind.value
        if detail:
            message = f"{message} ({detail})"
        super().__init__(f"{message} at position {position}")

    def render(self, source: str) -> str:
        """Two-line diagnostic: the line holding the error, then a caret under it.

        Tabs before the error are kept in the caret line so the caret lines up
        however the terminal expands them.
        """
        start = source.rfind("\n", 0, self.position) + 1
        end = source.find("\n", self.position)
        if end == -1:
            end = len(source)
        line = source[start:end].rstrip("\r")
        pad = "".join(c if c == "\t" else " " for c in source[start:self.position])
        return f"  {line}\n  {pad}^ {self.args[0]}"


class LexError(CompileError):
    """The pattern text contains something that is not a token."""


class ParseError(CompileError):
    """The tokens do not form a valid pattern."""


class CaptureError(LookupError):
    """A capture was queried inconsistently with the pattern that made it."""


class UnknownCaptureName(CaptureError, KeyError):
    """The pattern declares no capture with this name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(name)

    def __str__(self):
        return f"pattern has no capture named {self.name!r}"


class WrongCaptureKind(CaptureError, TypeError):
    """The capture exists but holds the other kind of value."""

    def __init__(self, name: str, expected: "CaptureKind", actual: "CaptureKind"):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"capture {name!r} is a {actual.value}, not a {expected.value}")


# =============================================================================
# Lexer
# =============================================================================

class TokenKind(enum.Enum):
    LITERAL_CHAR = "char literal"
    LITERAL_STRING = "string literal"
    IDENTIFIER = "identifier"
    WILDCARD = "'_'"
    REPEAT = "repeat suffix"
    OPEN_BRACKET = "'['"
    CLOSE_BRACKET = "']'"


@dataclass(frozen=True)
class Token:
    """A lexed token. ``value`` is bytes for literals, the name for
    identifiers, the count for repeat suffixes, and None otherwise."""
    kind: TokenKind
    value: Union[bytes, str, int, None]
    pos: int

    def __repr__(self):
        if self.value is None:
            return f"{self.kind.name}@{self.pos}"
        return f"{self.kind.name}({self.value!r})@{self.pos}"


ESCAPES = {
    "n": 0x0A,
    "r": 0x0D,
    "t": 0x09,
    "0": 0x00,
    "\\": 0x5C,
    "'": 0x27,
    '"': 0x22,
}

IDENT_START = frozenset(string.ascii_letters + "_")
IDENT_CHARS = IDENT_START | frozenset(string.digits)

# A word that ends in x<digits> is a term followed by its repeat suffix,
# e.g. `_x3` or `fieldx4`. The head may itself contain `x<digits>`.
_WORD_WITH_REPEAT = re.compile(r"(_|[A-Za-z_][A-Za-z0-9_]*?)x([0-9]+)")
_REPEAT_SUFFIX = re.compile(r"x([0-9]+)")


class Lexer:
    """Turns pattern text into a flat list of tokens.

    Whitespace only separates tokens. A repeat suffix is recognised only when
    it is glued to the literal or wildcard it repeats.
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.length = len(text)
        self.tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        while self.pos < self.length:
            ch = self.text[self.pos]

            if ch.isspace():
                self._advance()
                continue

            if ch == "[":
                self._push(TokenKind.OPEN_BRACKET, None, self.pos)
                self._advance()
            elif ch == "]":
                self._push(TokenKind.CLOSE_BRACKET, None, self.pos)
                self._advance()
            elif ch == "'":
                self._lex_char(self.pos, ascii_only=False)
            elif ch == '"':
                self._lex_string(self.pos, ascii_only=False)
            elif ch == "b" and self._peek(1) == "'":
                start = self.pos
                self._advance()
                self._lex_char(start, ascii_only=True)
            elif ch == "b" and self._peek(1) == '"':
                start = self.pos
                self._advance()
                self._lex_string(start, ascii_only=True)
            elif ch in IDENT_START:
                self._lex_word()
            else:
                raise LexError(ErrorKind.UNEXPECTED_CHARACTER, self.pos, repr(ch))

        return self.tokens

    def _peek(self, offset: int = 0) -> Optional[str]:
        pos = self.pos + offset
        if pos < self.length:
            return self.text[pos]
        return None

    def _advance(self, count: int = 1):
        self.pos += count

    def _push(self, kind: TokenKind, value, pos: int):
        self.tokens.append(Token(kind, value, pos))

    def _scan_word(self) -> str:
        start = self.pos
        while self.pos < self.length and self.text[self.pos] in IDENT_CHARS:
            self._advance()
        return self.text[start:self.pos]

    def _lex_char(self, start: int, ascii_only: bool):
        data = self._read_quoted("'", start, ascii_only)
        if len(data) != 1:
            raise LexError(ErrorKind.INVALID_CHAR_LITERAL, start,
                           f"got {len(data)} bytes")
        self._push(TokenKind.LITERAL_CHAR, data, start)
        self._lex_suffix()

    def _lex_string(self, start: int, ascii_only: bool):
        data = self._read_quoted('"', start, ascii_only)
        self._push(TokenKind.LITERAL_STRING, data, start)
        self._lex_suffix()

    def _read_quoted(self, quote: str, start: int, ascii_only: bool) -> bytes:
        """Read a quoted literal body starting at the opening quote."""
        self._advance()
        out = bytearray()
        while True:
            ch = self._peek()
            if ch is None:
                raise LexError(ErrorKind.UNTERMINATED_LITERAL, start)
            if ch == quote:
                self._advance()
                return bytes(out)
            if ch == "\\":
                out.append(self._read_escape(start))
                continue
            if ascii_only and ord(ch) > 0x7F:
                raise LexError(ErrorKind.UNEXPECTED_CHARACTER, self.pos,
                               "non-ASCII character in byte literal")
            out += ch.encode("utf-8")
            self._advance()

    def _read_escape(self, start: int) -> int:
        esc_pos = self.pos
        ch = self._peek(1)
        if ch is None:
            raise LexError(ErrorKind.UNTERMINATED_LITERAL, start)
        if ch in ESCAPES:
            self._advance(2)
            return ESCAPES[ch]
        if ch == "x":
            hex_digits = self.text[self.pos + 2:self.pos + 4]
            if len(hex_digits) == 2 and all(c in string.hexdigits for c in hex_digits):
                self._advance(4)
                return int(hex_digits, 16)
            raise LexError(ErrorKind.INVALID_ESCAPE, esc_pos, "expected \\xNN")
        raise LexError(ErrorKind.INVALID_ESCAPE, esc_pos, f"\\{ch}")

    def _lex_suffix(self):
        """Lex an optional `x<digits>` glued to the closing quote."""
        if self._peek() not in IDENT_CHARS:
            return
        start = self.pos
        word = self._scan_word()
        m = _REPEAT_SUFFIX.fullmatch(word)
        if not m:
            raise LexError(ErrorKind.INVALID_SUFFIX, start, repr(word))
        self._push(TokenKind.REPEAT, int(m.group(1)), start)

    def _lex_word(self):
        start = self.pos
        word = self._scan_word()
        m = _WORD_WITH_REPEAT.fullmatch(word)
        head = m.group(1) if m else word
        kind = TokenKind.WILDCARD if head == "_" else TokenKind.IDENTIFIER
        self._push(kind, None if head == "_" else head, start)
        if m:
            self._push(TokenKind.REPEAT, int(m.group(2)), start + len(head))


def tokenize(text: str) -> List[Token]:
    """Lex pattern text into tokens."""
    return Lexer(text).tokenize()


# =============================================================================
# AST Node Types
# =============================================================================

@dataclass(frozen=True)
class Literal:
    """An exact byte run, repeated ``repeat`` times."""
    data: bytes
    repeat: int = 1

    @property
    def size(self) -> int:
        return len(self.data) * self.repeat

    def __repr__(self):
        return f"Literal({self.data!r}x{self.repeat})"


@dataclass(frozen=True)
class Wildcard:
    """``repeat`` arbitrary bytes, captured under ``binding`` if set."""
    binding: Optional[str] = None
    repeat: int = 1

    @property
    def size(self) -> int:
        return self.repeat

    def __repr__(self):
        return f"Wildcard({self.binding or '_'}x{self.repeat})"


@dataclass(frozen=True)
class Rest:
    """Everything left in the input, captured under ``binding`` if set."""
    binding: Optional[str] = None

    @property
    def size(self) -> int:
        return 0

    def __repr__(self):
        return f"Rest({self.binding or '_'})"


# Type alias for all term types
Term = Union[Literal, Wildcard, Rest]


@dataclass(frozen=True)
class Pattern:
    """A validated sequence of terms."""
    terms: Tuple[Term, ...] = ()

    @property
    def has_rest(self) -> bool:
        return bool(self.terms) and isinstance(self.terms[-1], Rest)

    @property
    def bindings(self) -> List[str]:
        return [t.binding for t in self.terms
                if not isinstance(t, Literal) and t.binding is not None]


def _byte_to_source(b: int, quote: str) -> str:
    named = {0x0A: "\\n", 0x0D: "\\r", 0x09: "\\t", 0x00: "\\0", 0x5C: "\\\\"}
    if b in named:
        return named[b]
    if chr(b) == quote:
        return f"\\{quote}"
    if 0x20 <= b < 0x7F:
        return chr(b)
    return f"\\x{b:02x}"


def _suffix(repeat: int) -> str:
    return "" if repeat == 1 else f"x{repeat}"


def pattern_to_source(pattern: Pattern) -> str:
    """Render a pattern back to canonical pattern text."""
    parts = []
    for term in pattern.terms:
        if isinstance(term, Literal):
            if len(term.data) == 1:
                body = _byte_to_source(term.data[0], "'")
                parts.append(f"'{body}'{_suffix(term.repeat)}")
            else:
                body = "".join(_byte_to_source(b, '"') for b in term.data)
                parts.append(f'"{body}"{_suffix(term.repeat)}')
        elif isinstance(term, Wildcard):
            parts.append(f"{term.binding or '_'}{_suffix(term.repeat)}")
        else:
            parts.append(f"[{term.binding or '_'}]")
    return " ".join(parts)


# =============================================================================
# Parser
# =============================================================================

class PatternParser:
    """
    Single-pass parser over a token list with one token of lookahead.

    Grammar:
        pattern  -> term* rest?
        term     -> (char | string | '_' | ident) repeat?
        rest     -> '[' ('_' | ident) ']'
    """

    def __init__(self, tokens: List[Token], end: int = 0):
        self.tokens = tokens
        self.pos = 0
        self.length = len(tokens)
        # Source offset reported for errors at end of input
        self.end = end
        self.bindings = set()

    def parse(self) -> Pattern:
        terms: List[Term] = []
        rest_seen = False
        trailing: Optional[Token] = None

        while self.pos < self.length:
            token = self.tokens[self.pos]
            if token.kind is TokenKind.OPEN_BRACKET:
                if rest_seen:
                    raise ParseError(ErrorKind.MULTIPLE_REST, token.pos)
                terms.append(self._parse_rest())
                rest_seen = True
                continue
            if rest_seen and trailing is None:
                trailing = token
            terms.append(self._parse_term())

        if trailing is not None:
            raise ParseError(ErrorKind.REST_NOT_LAST, trailing.pos)
        return Pattern(tuple(terms))

    def _peek(self) -> Optional[Token]:
        if self.pos < self.length:
            return self.tokens[self.pos]
        return None

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _bind(self, token: Token):
        if token.value in self.bindings:
            raise ParseError(ErrorKind.DUPLICATE_BINDING, token.pos, repr(token.value))
        self.bindings.add(token.value)

    def _parse_repeat(self) -> int:
        token = self._peek()
        if token is not None and token.kind is TokenKind.REPEAT:
            self._advance()
            return token.value
        return 1

    def _parse_term(self) -> Term:
        token = self._advance()
        kind = token.kind

        if kind in (TokenKind.LITERAL_CHAR, TokenKind.LITERAL_STRING):
            return Literal(token.value, self._parse_repeat())
        if kind is TokenKind.WILDCARD:
            return Wildcard(None, self._parse_repeat())
        if kind is TokenKind.IDENTIFIER:
            self._bind(token)
            return Wildcard(token.value, self._parse_repeat())
        if kind is TokenKind.CLOSE_BRACKET:
            raise ParseError(ErrorKind.BRACKET_MISMATCH, token.pos, "unmatched ']'")
        raise ParseError(ErrorKind.UNEXPECTED_TOKEN, token.pos, kind.value)

    def _parse_rest(self) -> Rest:
        """Parse rest: '[' ('_' | ident) ']'"""
        opening = self._advance()

        inner = self._peek()
        if inner is None:
            raise ParseError(ErrorKind.BRACKET_MISMATCH, self.end, "unclosed '['")
        if inner.kind not in (TokenKind.WILDCARD, TokenKind.IDENTIFIER):
            raise ParseError(ErrorKind.BRACKET_MISMATCH, inner.pos,
                             f"expected '_' or a name after '[', got {inner.kind.value}")
        self._advance()

        closing = self._peek()
        if closing is None:
            raise ParseError(ErrorKind.BRACKET_MISMATCH, self.end,
                             f"'[' at position {opening.pos} is never closed")
        if closing.kind is not TokenKind.CLOSE_BRACKET:
            raise ParseError(ErrorKind.BRACKET_MISMATCH, closing.pos,
                             f"expected ']', got {closing.kind.value}")
        self._advance()

        if inner.kind is TokenKind.IDENTIFIER:
            self._bind(inner)
            return Rest(inner.value)
        return Rest(None)


def parse(tokens: List[Token], end: int = 0) -> Pattern:
    """Parse a token list into a validated Pattern."""
    return PatternParser(tokens, end).parse()


# =============================================================================
# Compiler
# =============================================================================

class CaptureKind(enum.Enum):
    BYTE = "byte"
    SLICE = "slice"


class Op(enum.Enum):
    LITERAL = "literal"
    BYTE = "byte"
    SLICE = "slice"
    REST = "rest"


@dataclass(frozen=True)
class Step:
    """One lowered operation, located at a fixed byte offset.

    A literal step compares ``data`` ``repeat`` times back to back, so
    ``size == len(data) * repeat``.
    """
    op: Op
    offset: int
    size: int = 0
    data: bytes = b""
    name: Optional[str] = None
    repeat: int = 1

    def __repr__(self):
        if self.op is Op.LITERAL:
            suffix = "" if self.repeat == 1 else f"x{self.repeat}"
            return f"Step(literal {self.data!r}{suffix} @{self.offset})"
        return f"Step({self.op.value} {self.name!r} @{self.offset}+{self.size})"


# Repeated literals expanding to more bytes than this keep their own step
# instead of being copied into a fused run.
MAX_FUSED_REPEAT = 256


class Compiler:
    """Lowers a Pattern into a CompiledPattern.

    Adjacent literal runs are fused into a single comparison and all literal
    checks are ordered before any capture, so a failing input does no capture
    work. Unbound wildcards and zero-length literals emit nothing. A literal
    repeated past MAX_FUSED_REPEAT bytes is never expanded; its step holds
    one copy of the data and the repeat count.
    """

    def compile(self, pattern: Pattern, source: Optional[str] = None) -> "CompiledPattern":
        checks: List[Step] = []
        captures: List[Step] = []
        kinds: Dict[str, CaptureKind] = {}
        offset = 0
        run = bytearray()
        run_start = 0

        def flush():
            if run:
                checks.append(Step(Op.LITERAL, run_start, len(run), bytes(run)))
                run.clear()

        for term in pattern.terms:
            if isinstance(term, Literal):
                if term.repeat != 1 and term.size > MAX_FUSED_REPEAT:
                    flush()
                    checks.append(Step(Op.LITERAL, offset, term.size, term.data,
                                       repeat=term.repeat))
                elif term.size:
                    if not run:
                        run_start = offset
                    run += term.data * term.repeat
                offset += term.size
            elif isinstance(term, Wildcard):
                if term.size:
                    flush()
                if term.binding is not None:
                    if term.repeat == 1:
                        kinds[term.binding] = CaptureKind.BYTE
                        captures.append(Step(Op.BYTE, offset, 1, name=term.binding))
                    else:
                        kinds[term.binding] = CaptureKind.SLICE
                        captures.append(Step(Op.SLICE, offset, term.repeat, name=term.binding))
                offset += term.size
            elif term.binding is not None:
                kinds[term.binding] = CaptureKind.SLICE
                captures.append(Step(Op.REST, offset, name=term.binding))
        flush()

        if source is None:
            source = pattern_to_source(pattern)
        return CompiledPattern(
            source=source,
            pattern=pattern,
            length=offset,
            has_rest=pattern.has_rest,
            kinds=MappingProxyType(kinds),
            steps=tuple(checks + captures),
        )


# =============================================================================
# Matcher
# =============================================================================

def _as_view(data) -> memoryview:
    if isinstance(data, str):
        data = data.encode("utf-8")
    view = memoryview(data)
    if view.format != "B":
        view = view.cast("B")
    return view


def _check_kind(kinds: Mapping, name: str, expected: CaptureKind):
    actual = kinds.get(name)
    if actual is None:
        raise UnknownCaptureName(name)
    if actual is not expected:
        raise WrongCaptureKind(name, expected, actual)


class Captures(Mapping):
    """Captures from one successful match.

    Byte captures are ints; slice captures are memoryviews into the matched
    input, so nothing is copied. Use ``to_dict()`` for owned values.
    """

    __slots__ = ("_values", "_kinds")

    def __init__(self, values: Dict[str, object], kinds: Mapping):
        self._values = values
        self._kinds = kinds

    def __getitem__(self, name: str):
        try:
            return self._values[name]
        except KeyError:
            raise UnknownCaptureName(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def kind(self, name: str) -> CaptureKind:
        if name not in self._kinds:
            raise UnknownCaptureName(name)
        return self._kinds[name]

    def byte_at(self, name: str) -> int:
        _check_kind(self._kinds, name, CaptureKind.BYTE)
        return self._values[name]

    def slice_at(self, name: str) -> memoryview:
        _check_kind(self._kinds, name, CaptureKind.SLICE)
        return self._values[name]

    def to_dict(self) -> Dict[str, Union[int, bytes]]:
        return {name: value if isinstance(value, int) else bytes(value)
                for name, value in self._values.items()}

    def __repr__(self):
        return f"Captures({self.to_dict()!r})"


@dataclass(frozen=True)
class CompiledPattern:
    """An immutable, reusable matcher for one pattern.

    ``length`` is the exact input length when there is no rest capture, and
    the minimum input length when there is one. ``kinds`` maps each capture
    name to its CaptureKind and is fixed at compile time.
    """
    source: str = field(compare=False)
    pattern: Pattern = field(compare=False)
    length: int
    has_rest: bool
    kinds: Mapping = field(hash=False)
    steps: Tuple[Step, ...]

    @property
    def exact_length(self) -> Optional[int]:
        return None if self.has_rest else self.length

    def apply(self, data) -> Optional[Captures]:
        """Match ``data``; return Captures, or None if it does not match."""
        view = _as_view(data)
        size = len(view)
        if self.has_rest:
            if size < self.length:
                return None
        elif size != self.length:
            return None

        values = {}
        for step in self.steps:
            op = step.op
            if op is Op.LITERAL:
                if step.repeat == 1:
                    if view[step.offset:step.offset + step.size] != step.data:
                        return None
                else:
                    unit = len(step.data)
                    for start in range(step.offset, step.offset + step.size, unit):
                        if view[start:start + unit] != step.data:
                            return None
            elif op is Op.BYTE:
                values[step.name] = view[step.offset]
            elif op is Op.SLICE:
                values[step.name] = view[step.offset:step.offset + step.size]
            else:
                values[step.name] = view[step.offset:]
        return Captures(values, self.kinds)

    def matches(self, data) -> bool:
        return self.apply(data) is not None

    def byte_accessor(self, name: str) -> Callable[[Mapping], int]:
        """Getter for a byte capture, with the kind checked once, up front."""
        _check_kind(self.kinds, name, CaptureKind.BYTE)
        return operator.itemgetter(name)

    def slice_accessor(self, name: str) -> Callable[[Mapping], memoryview]:
        """Getter for a slice capture, with the kind checked once, up front."""
        _check_kind(self.kinds, name, CaptureKind.SLICE)
        return operator.itemgetter(name)

    def specialize(self, name: str = "pattern") -> Callable:
        """Generate, execute and return a straight-line matcher function.

        The executed source is built by PythonEmitter from this already
        validated pattern only. Literal bytes are written with repr() and the
        pattern text appears only in comments, so no caller-supplied text is
        executed.
        """
        emitter = PythonEmitter(name)
        code = emitter.generate(self)
        namespace: Dict[str, object] = {}
        exec(compile(code, f"<strmatch {name}>", "exec"), namespace)
        return namespace[emitter.function_name]

    def __repr__(self):
        bound = ", ".join(f"{n}: {k.value}" for n, k in self.kinds.items())
        size = f">={self.length}" if self.has_rest else f"=={self.length}"
        return f"CompiledPattern({self.source!r}, len{size}, {{{bound}}})"


# =============================================================================
# Python Code Emitter
# =============================================================================

class PythonEmitter:
    """Generates a straight-line Python matcher from a CompiledPattern."""

    def __init__(self, name: str):
        if not name.isidentifier():
            raise ValueError(f"Invalid matcher name: {name!r}")
        self.name = name
        self.function_name = f"match_{name}"
        self.indent_level = 0
        self.lines: List[str] = []

    # =========================================================================
    # Emit Infrastructure
    # =========================================================================

    def _emit(self, line: str = ""):
        """Emit a single line with current indentation."""
        if line:
            self.lines.append("    " * self.indent_level + line)
        else:
            self.lines.append("")

    def _emit_block(self, template: str, vars: dict = None):
        """Emit a multi-line template block with auto-dedent.

        Uses $var syntax for substitution. Pass locals() as vars for
        convenience.
        """
        code = textwrap.dedent(template).strip()
        if vars:
            code = Template(code).safe_substitute(vars)
        for line in code.split('\n'):
            self._emit(line)

    @contextmanager
    def _block(self, open_line: str):
        """Context manager for an indented suite under ``open_line``."""
        self._emit(open_line)
        self.indent_level += 1
        try:
            yield
        finally:
            self.indent_level -= 1

    def generate(self, compiled: CompiledPattern) -> str:
        """Generate Python source for the given compiled pattern."""
        self.lines = []
        self.indent_level = 0
        func_name = self.function_name
        name = self.name

        # File header with original pattern
        self._emit("# Auto-generated by strmatch.py")
        self._emit("# Do not edit manually")
        self._emit("#")
        self._emit("# Original pattern:")
        self._emit("#")
        for line in compiled.source.splitlines():
            self._emit(f"#   {line}")
        self._emit("#")
        self._emit("")
        self._emit("")

        with self._block(f"def {func_name}(data):"):
            self._emit_block('''
                """Match data against the '$name' pattern.

                Returns a dict of captures, or None if data does not match.
                """
                if isinstance(data, str):
                    data = data.encode("utf-8")
                view = memoryview(data)
                if view.format != "B":
                    view = view.cast("B")
            ''', locals())
            self._generate_length_check(compiled)
            for step in compiled.steps:
                if step.op is Op.LITERAL:
                    self._generate_literal_check(step)
            self._generate_result(compiled)

        self._emit("")
        return "\n".join(self.lines)

    def _generate_length_check(self, compiled: CompiledPattern):
        length = compiled.length
        if compiled.has_rest:
            if length == 0:
                return
            op = "<"
        else:
            op = "!="
        self._emit_block('''
            if len(view) $op $length:
                return None
        ''', locals())

    def _generate_literal_check(self, step: Step):
        start = step.offset
        end = step.offset + step.size
        data = repr(step.data)
        if step.repeat != 1:
            unit = len(step.data)
            self._emit_block('''
                for i in range($start, $end, $unit):
                    if view[i:i + $unit] != $data:
                        return None
            ''', locals())
        elif step.size == 1:
            value = step.data[0]
            self._emit_block('''
                if view[$start] != $value:  # $data
                    return None
            ''', locals())
        else:
            self._emit_block('''
                if view[$start:$end] != $data:
                    return None
            ''', locals())

    def _generate_result(self, compiled: CompiledPattern):
        captures = [s for s in compiled.steps if s.op is not Op.LITERAL]
        if not captures:
            self._emit("return {}")
            return
        with self._block("return {"):
            for step in captures:
                key = repr(step.name)
                if step.op is Op.BYTE:
                    self._emit(f"{key}: view[{step.offset}],")
                elif step.op is Op.SLICE:
                    self._emit(f"{key}: view[{step.offset}:{step.offset + step.size}],")
                else:
                    self._emit(f"{key}: view[{step.offset}:],")
        self._emit("}")


# =============================================================================
# Public API
# =============================================================================

@functools.lru_cache(maxsize=256)
def compile_pattern(source: str) -> CompiledPattern:
    """Compile pattern text, raising CompileError if it is invalid.

    Results are cached per source text; CompiledPattern is immutable so the
    cached value can be shared freely.
    """
    tokens = tokenize(source)
    pattern = parse(tokens, end=len(source))
    return Compiler().compile(pattern, source)


def match_bytes(compiled: CompiledPattern, data) -> Optional[Captures]:
    """Match ``data`` against ``compiled``; None means no match."""
    return compiled.apply(data)


def purge():
    """Clear the compiled pattern cache."""
    compile_pattern.cache_clear()


# =============================================================================
# Main
# =============================================================================

def _captures_to_json(compiled: CompiledPattern, captures: Captures) -> dict:
    out = {}
    for name, value in captures.to_dict().items():
        if isinstance(value, int):
            value = bytes([value])
        out[name] = {
            "kind": compiled.kinds[name].value,
            "value": value.decode("utf-8", errors="backslashreplace"),
        }
    return out


def main():
    parser = argparse.ArgumentParser(
        description="Compile strmatch patterns into Python matcher functions"
    )
    parser.add_argument(
        "--pattern", "-p",
        required=True,
        help="The pattern to compile"
    )
    parser.add_argument(
        "--name", "-n",
        default="pattern",
        help="Name for the generated function (default: 'pattern')"
    )
    parser.add_argument(
        "--output", "-o",
        help="Output file (default: stdout)"
    )
    parser.add_argument(
        "--match", "-m",
        metavar="TEXT",
        help="Match TEXT against the pattern and print the captures as JSON"
    )

    args = parser.parse_args()

    # Compile the pattern
    try:
        compiled = compile_pattern(args.pattern)
    except CompileError as e:
        print(f"Error compiling pattern:\n{e.render(args.pattern)}", file=sys.stderr)
        sys.exit(1)

    if args.match is not None:
        captures = compiled.apply(args.match)
        if captures is None:
            print("null")
            sys.exit(1)
        print(json.dumps(_captures_to_json(compiled, captures), indent=2))
        return

    # Generate Python code
    try:
        emitter = PythonEmitter(args.name)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    code = emitter.generate(compiled)

    # Output
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(code)
        print(f"Generated Python code written to {args.output}")
    else:
        print(code)

    # Report capture kinds
    if compiled.kinds:
        print("\n# Captures:", file=sys.stderr)
        for name, kind in compiled.kinds.items():
            print(f"#   - {name}: {kind.value}", file=sys.stderr)


if __name__ == "__main__":
    main()
