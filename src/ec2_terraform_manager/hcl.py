"""Tokenizer, literal parser and formatter for the HCL subset used in main.tf

The tokenizer understands the whole lexical surface the generated document
uses (quoted strings with escapes and ``${...}`` / ``%{...}`` templates,
heredocs, ``#``, ``//`` and ``/* */`` comments), so brace counting on top of it
is never fooled by braces inside strings or comments.

The parser only accepts literal values: objects, tuples, strings, numbers,
``true``, ``false`` and ``null``. That is everything an instance record holds.
"""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass
from typing import Any

LBRACE = "{"
RBRACE = "}"
LBRACKET = "["
RBRACKET = "]"
LPAREN = "("
RPAREN = ")"
EQUALS = "="
COLON = ":"
COMMA = ","
STRING = "string"
HEREDOC = "heredoc"
NUMBER = "number"
IDENT = "ident"
NEWLINE = "newline"
COMMENT = "comment"
OPERATOR = "operator"

OPENERS = frozenset({LBRACE, LBRACKET, LPAREN})
CLOSERS = frozenset({RBRACE, RBRACKET, RPAREN})

_PUNCTUATION = {
    "{": LBRACE,
    "}": RBRACE,
    "[": LBRACKET,
    "]": RBRACKET,
    "(": LPAREN,
    ")": RPAREN,
    ":": COLON,
    ",": COMMA,
}

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_HEREDOC_RE = re.compile(r"<<(-?)([A-Za-z_][A-Za-z0-9_-]*)[ \t]*\r?$", re.MULTILINE)
_BARE_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_RESERVED_KEYS = frozenset({"true", "false", "null"})

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}

INDENT = "  "


class HclSyntaxError(ValueError):
    """Raised when text cannot be tokenized or is not a literal value."""

    def __init__(self, message: str, line: int | None = None) -> None:
        self.line = line
        if line is not None:
            message = f"line {line + 1}: {message}"
        super().__init__(message)


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    start: int
    end: int
    line: int
    value: Any = None
    template: bool = False


class _Lexer:
    def __init__(self, text: str) -> None:
        self.text = text
        self.length = len(text)
        self.line_starts = [0] + [m.end() for m in re.finditer("\n", text)]

    def line_of(self, offset: int) -> int:
        return bisect.bisect_right(self.line_starts, offset) - 1

    def _token(self, kind: str, start: int, end: int, value: Any = None, template: bool = False) -> Token:
        return Token(kind, self.text[start:end], start, end, self.line_of(start), value, template)

    def tokenize(self) -> list[Token]:
        text = self.text
        tokens: list[Token] = []
        pos = 0
        while pos < self.length:
            ch = text[pos]
            if ch in " \t\r":
                pos += 1
            elif ch == "\n":
                tokens.append(self._token(NEWLINE, pos, pos + 1))
                pos += 1
            elif ch == "#" or text.startswith("//", pos):
                end = text.find("\n", pos)
                end = self.length if end == -1 else end
                tokens.append(self._token(COMMENT, pos, end))
                pos = end
            elif text.startswith("/*", pos):
                end = text.find("*/", pos + 2)
                if end == -1:
                    raise HclSyntaxError("unterminated block comment", self.line_of(pos))
                tokens.append(self._token(COMMENT, pos, end + 2))
                pos = end + 2
            elif ch == '"':
                end, value, template = self._read_string(pos)
                tokens.append(self._token(STRING, pos, end, value, template))
                pos = end
            elif text.startswith("<<", pos) and _HEREDOC_RE.match(text, pos):
                end, value = self._read_heredoc(pos)
                tokens.append(self._token(HEREDOC, pos, end, value))
                pos = end
            elif ch.isdigit() and (match := _NUMBER_RE.match(text, pos)):
                raw = match.group(0)
                value = float(raw) if any(c in raw for c in ".eE") else int(raw)
                tokens.append(self._token(NUMBER, pos, match.end(), value))
                pos = match.end()
            elif match := _IDENT_RE.match(text, pos):
                tokens.append(self._token(IDENT, pos, match.end(), match.group(0)))
                pos = match.end()
            elif ch == "=":
                if text.startswith(("==", "=>"), pos):
                    tokens.append(self._token(OPERATOR, pos, pos + 2))
                    pos += 2
                else:
                    tokens.append(self._token(EQUALS, pos, pos + 1))
                    pos += 1
            elif ch in _PUNCTUATION:
                tokens.append(self._token(_PUNCTUATION[ch], pos, pos + 1))
                pos += 1
            else:
                tokens.append(self._token(OPERATOR, pos, pos + 1))
                pos += 1
        return tokens

    def _read_string(self, pos: int) -> tuple[int, str, bool]:
        """Read a quoted string starting at *pos*; return (end, value, has_template)."""
        text = self.text
        chunks: list[str] = []
        template = False
        i = pos + 1
        while True:
            if i >= self.length or text[i] == "\n":
                raise HclSyntaxError("unterminated string", self.line_of(pos))
            ch = text[i]
            if ch == '"':
                return i + 1, "".join(chunks), template
            if ch == "\\":
                i = self._read_escape(i, chunks)
            elif text.startswith(("$${", "%%{"), i):
                chunks.append(text[i + 1 : i + 3])
                i += 3
            elif text.startswith(("${", "%{"), i):
                end = self._skip_template(i + 2)
                chunks.append(text[i:end])
                template = True
                i = end
            else:
                chunks.append(ch)
                i += 1

    def _read_escape(self, i: int, chunks: list[str]) -> int:
        text = self.text
        if i + 1 >= self.length:
            raise HclSyntaxError("dangling escape", self.line_of(i))
        code = text[i + 1]
        if code in _ESCAPES:
            chunks.append(_ESCAPES[code])
            return i + 2
        width = {"u": 4, "U": 8}.get(code)
        if width is None:
            raise HclSyntaxError(f"invalid escape sequence \\{code}", self.line_of(i))
        digits = text[i + 2 : i + 2 + width]
        if len(digits) != width or not re.fullmatch(r"[0-9A-Fa-f]+", digits):
            raise HclSyntaxError("invalid unicode escape", self.line_of(i))
        chunks.append(chr(int(digits, 16)))
        return i + 2 + width

    def _skip_template(self, i: int) -> int:
        """Return the offset just past the ``}`` closing a template opened before *i*."""
        depth = 1
        start = i
        while i < self.length:
            ch = self.text[i]
            if ch == '"':
                i, _, _ = self._read_string(i)
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return i + 1
            i += 1
        raise HclSyntaxError("unterminated template interpolation", self.line_of(start))

    def _read_heredoc(self, pos: int) -> tuple[int, str]:
        match = _HEREDOC_RE.match(self.text, pos)
        assert match is not None
        flush, marker = match.group(1) == "-", match.group(2)
        body_start = match.end() + 1
        lines: list[str] = []
        cursor = body_start
        while cursor <= self.length:
            newline = self.text.find("\n", cursor)
            line_end = self.length if newline == -1 else newline
            line = self.text[cursor:line_end]
            if line.strip() == marker:
                return line_end, _heredoc_value(lines, flush)
            lines.append(line.rstrip("\r"))
            if newline == -1:
                break
            cursor = newline + 1
        raise HclSyntaxError(f"unterminated heredoc {marker}", self.line_of(pos))


def _heredoc_value(lines: list[str], flush: bool) -> str:
    if flush:
        widths = [len(line) - len(line.lstrip()) for line in lines if line.strip()]
        trim = min(widths, default=0)
        lines = [line[trim:] for line in lines]
    return "".join(line + "\n" for line in lines)


def tokenize(text: str) -> list[Token]:
    """Split *text* into tokens, raising HclSyntaxError on unterminated constructs."""
    return _Lexer(text).tokenize()


class _Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = [t for t in tokens if t.kind != COMMENT]
        self.pos = 0

    def _peek(self) -> Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _skip_newlines(self) -> None:
        while (tok := self._peek()) is not None and tok.kind == NEWLINE:
            self.pos += 1

    def _next(self) -> Token:
        self._skip_newlines()
        tok = self._peek()
        if tok is None:
            raise HclSyntaxError("unexpected end of input")
        self.pos += 1
        return tok

    def _expect(self, *kinds: str) -> Token:
        tok = self._next()
        if tok.kind not in kinds:
            raise HclSyntaxError(f"expected {' or '.join(kinds)}, found {tok.text!r}", tok.line)
        return tok

    def at_end(self) -> bool:
        self._skip_newlines()
        return self._peek() is None

    def parse_key(self) -> str:
        tok = self._expect(IDENT, STRING)
        if tok.kind == STRING and tok.template:
            raise HclSyntaxError("object keys may not contain templates", tok.line)
        return tok.value

    def parse_entry(self) -> tuple[str, Any]:
        key = self.parse_key()
        self._expect(EQUALS, COLON)
        return key, self.parse_value()

    def parse_value(self) -> Any:
        tok = self._next()
        if tok.kind == LBRACE:
            return self._parse_object()
        if tok.kind == LBRACKET:
            return self._parse_tuple()
        if tok.kind == STRING:
            if tok.template:
                raise HclSyntaxError(f"template expression {tok.text} is not a literal", tok.line)
            return tok.value
        if tok.kind in (HEREDOC, NUMBER):
            return tok.value
        if tok.kind == OPERATOR and tok.text == "-":
            number = self._expect(NUMBER)
            return -number.value
        if tok.kind == IDENT and tok.text in ("true", "false"):
            return tok.text == "true"
        if tok.kind == IDENT and tok.text == "null":
            return None
        raise HclSyntaxError(f"unsupported expression starting at {tok.text!r}", tok.line)

    def _parse_object(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        while True:
            self._skip_newlines()
            tok = self._peek()
            if tok is None:
                raise HclSyntaxError("unterminated object")
            if tok.kind == RBRACE:
                self.pos += 1
                return result
            key, value = self.parse_entry()
            if key in result:
                raise HclSyntaxError(f"duplicate key {key!r}", tok.line)
            result[key] = value
            after = self._peek()
            if after is None:
                raise HclSyntaxError("unterminated object")
            if after.kind in (COMMA, NEWLINE):
                self.pos += 1
            elif after.kind != RBRACE:
                raise HclSyntaxError(f"unexpected {after.text!r} after value of {key!r}", after.line)

    def _parse_tuple(self) -> list[Any]:
        items: list[Any] = []
        while True:
            self._skip_newlines()
            tok = self._peek()
            if tok is None:
                raise HclSyntaxError("unterminated tuple")
            if tok.kind == RBRACKET:
                self.pos += 1
                return items
            items.append(self.parse_value())
            self._skip_newlines()
            after = self._peek()
            if after is not None and after.kind == COMMA:
                self.pos += 1
            elif after is None or after.kind != RBRACKET:
                raise HclSyntaxError("expected ',' or ']' in tuple", None if after is None else after.line)


def parse_literal(text: str) -> Any:
    """Parse *text* holding exactly one literal value."""
    parser = _Parser(tokenize(text))
    value = parser.parse_value()
    if not parser.at_end():
        raise HclSyntaxError("trailing content after value")
    return value


def parse_entry(text: str) -> tuple[str, Any]:
    """Parse *text* holding exactly one ``key = value`` entry."""
    parser = _Parser(tokenize(text))
    parser._skip_newlines()
    key, value = parser.parse_entry()
    tail = parser._peek()
    if tail is not None and tail.kind == COMMA:
        parser.pos += 1
    if not parser.at_end():
        raise HclSyntaxError("trailing content after entry")
    return key, value


def format_string(value: str) -> str:
    """Quote *value* as an HCL string literal."""
    out: list[str] = []
    for ch in value:
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif ord(ch) < 0x20:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
    quoted = "".join(out).replace("${", "$${").replace("%{", "%%{")
    return f'"{quoted}"'


def format_key(key: str) -> str:
    if _BARE_KEY_RE.match(key) and key not in _RESERVED_KEYS:
        return key
    return format_string(key)


def format_value(value: Any, level: int = 0) -> str:
    """Render a literal value; nested objects and object lists span lines."""
    pad = INDENT * level
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return format_string(value)
    if isinstance(value, dict):
        if not value:
            return "{}"
        body = "\n".join(format_body(value, level + 1))
        return f"{{\n{body}\n{pad}}}"
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        if any(isinstance(item, (dict, list, tuple)) for item in value):
            inner = INDENT * (level + 1)
            items = "\n".join(f"{inner}{format_value(item, level + 1)}," for item in value)
            return f"[\n{items}\n{pad}]"
        return "[" + ", ".join(format_value(item, level) for item in value) + "]"
    raise TypeError(f"cannot render {type(value).__name__} as HCL")


def format_body(mapping: dict[str, Any], level: int) -> list[str]:
    """Render object attributes, aligning ``=`` across runs of one-line values."""
    pad = INDENT * level
    lines: list[str] = []
    run: list[tuple[str, str]] = []

    def flush() -> None:
        width = max(len(key) for key, _ in run)
        lines.extend(f"{pad}{key.ljust(width)} = {rendered}" for key, rendered in run)
        run.clear()

    for key, value in mapping.items():
        rendered = format_value(value, level)
        if "\n" in rendered:
            if run:
                flush()
            lines.append(f"{pad}{format_key(key)} = {rendered}")
        else:
            run.append((format_key(key), rendered))
    if run:
        flush()
    return lines


def format_entry(key: str, value: Any, level: int) -> str:
    return f"{INDENT * level}{format_key(key)} = {format_value(value, level)}"
