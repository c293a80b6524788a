"""Brace-region scanner for the instance map in main.tf"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence

from ec2_terraform_manager import hcl
from ec2_terraform_manager.console import print_debug
from ec2_terraform_manager.errors import UnbalancedDocumentError

INSTANCE_MAP_RE = re.compile(r"^\s*instances\s*=\s*\{")


@dataclass(frozen=True)
class Region:
    """A balanced ``{ ... }`` region.

    ``start`` and ``end`` are the line indices holding the opening and the
    closing brace. ``open_offset`` points just past the opening brace and
    ``close_offset`` at the closing brace, so ``text[open_offset:close_offset]``
    is the region's content.
    """

    start: int
    end: int
    open_offset: int
    close_offset: int


@dataclass(frozen=True)
class Entry:
    """One top-level ``key = value`` entry inside a region."""

    key: str
    key_line: int
    start: int
    end: int

    def text(self, source: str) -> str:
        return source[self.start : self.end]


def instance_map_predicate(line: str) -> bool:
    return INSTANCE_MAP_RE.match(line) is not None


def record_predicate(key: str) -> Callable[[str], bool]:
    """Anchored line matcher for ``<key> = {``, bare or quoted."""
    escaped = re.escape(key)
    pattern = re.compile(rf'^\s*(?:{escaped}|"{escaped}")\s*=\s*\{{')
    return lambda line: pattern.match(line) is not None


def _tokenize(text: str) -> list[hcl.Token] | None:
    try:
        return hcl.tokenize(text)
    except hcl.HclSyntaxError as e:
        print_debug(f"Document cannot be scanned: {e}")
        return None


def locate_balanced_region(
    lines: Sequence[str],
    start_predicate: Callable[[str], bool],
    start: int = 0,
) -> Region | None:
    """Find the brace region opened on the first line matching *start_predicate*.

    Depth starts at 1 on the first opening brace token of the matching line and
    changes with every brace token after it. Braces inside strings, templates,
    heredocs and comments are not tokens and never count. Returns None when no
    line matches, the region never closes, or the text cannot be tokenized.
    """
    tokens = _tokenize("\n".join(lines))
    if tokens is None:
        return None

    opening: hcl.Token | None = None
    depth = 0
    for token in tokens:
        if opening is None:
            if token.kind == hcl.LBRACE and token.line >= start and start_predicate(lines[token.line]):
                opening = token
                depth = 1
            continue
        if token.kind == hcl.LBRACE:
            depth += 1
        elif token.kind == hcl.RBRACE:
            depth -= 1
            if depth == 0:
                return Region(opening.line, token.line, opening.end, token.start)
    if opening is not None:
        print_debug(f"Region opened on line {opening.line + 1} never closes")
    return None


def find_instance_map(text: str) -> Region | None:
    return locate_balanced_region(text.split("\n"), instance_map_predicate)


def require_instance_map(text: str) -> Region | None:
    """Like :func:`find_instance_map`, but a broken map raises.

    None means the document has no ``instances = {`` line at all. A document
    that cannot be tokenized, or whose map never closes, raises
    UnbalancedDocumentError.
    """
    try:
        hcl.tokenize(text)
    except hcl.HclSyntaxError as e:
        raise UnbalancedDocumentError(f"Configuration cannot be scanned: {e}") from e
    lines = text.split("\n")
    opened = next((number for number, line in enumerate(lines) if instance_map_predicate(line)), None)
    if opened is None:
        return None
    region = locate_balanced_region(lines, instance_map_predicate)
    if region is None:
        raise UnbalancedDocumentError(f"Instance map opened on line {opened + 1} never closes")
    return region


def _line_start(text: str, offset: int) -> int:
    return text.rfind("\n", 0, offset) + 1


def _first_on_line(text: str, offset: int) -> bool:
    return text[_line_start(text, offset) : offset].strip() == ""


def iter_entries(text: str, region: Region) -> Iterator[Entry]:
    """Yield the top-level entries of *region* without descending into them.

    An entry's block starts at the beginning of its key's line (keeping the
    indentation) and takes along the comment lines directly above it. It ends
    after the value, including a trailing comma and a same-line comment.
    """
    tokens = _tokenize(text)
    if tokens is None:
        return
    inner = [t for t in tokens if region.open_offset <= t.start < region.close_offset]

    comment_start: int | None = None
    i = 0
    while i < len(inner):
        token = inner[i]
        if token.kind == hcl.NEWLINE:
            i += 1
            continue
        if token.kind == hcl.COMMENT:
            if comment_start is None and _first_on_line(text, token.start):
                comment_start = _line_start(text, token.start)
            i += 1
            continue

        nxt = inner[i + 1] if i + 1 < len(inner) else None
        if token.kind not in (hcl.IDENT, hcl.STRING) or nxt is None or nxt.kind not in (hcl.EQUALS, hcl.COLON):
            comment_start = None
            i += 1
            continue

        if comment_start is not None:
            block_start = comment_start
        elif _first_on_line(text, token.start):
            block_start = _line_start(text, token.start)
        else:
            block_start = token.start

        j = i + 2
        depth = 0
        last: int | None = None
        while j < len(inner):
            t = inner[j]
            if depth == 0 and last is not None and t.kind in (hcl.NEWLINE, hcl.COMMA, hcl.COMMENT):
                break
            if t.kind in hcl.OPENERS:
                depth += 1
            elif t.kind in hcl.CLOSERS:
                depth -= 1
            if t.kind not in (hcl.NEWLINE, hcl.COMMENT):
                last = j
            j += 1

        if last is None:
            print_debug(f"Entry '{token.text}' on line {token.line + 1} has no value")
            comment_start = None
            i = j
            continue

        end = inner[last].end
        end_line = inner[last].line
        if j < len(inner) and inner[j].kind == hcl.COMMA:
            end = inner[j].end
            j += 1
        if j < len(inner) and inner[j].kind == hcl.COMMENT and inner[j].line == end_line:
            end = inner[j].end
            j += 1

        key = token.value if token.kind == hcl.STRING else token.text
        yield Entry(key=key, key_line=token.line, start=block_start, end=end)
        comment_start = None
        i = j

