"""Split raw SQL text into syntactically complete statements.

The scanner does boundary detection only: it knows where strings, quoted
identifiers, dollar-quoted blocks and comments start and end, so that a ``;``
inside any of them never ends a statement. It is not a SQL grammar.
"""

from __future__ import annotations

import hashlib
import re
from typing import Callable, Iterator

from .errors import StatementSyntaxError
from .models import Statement, StatementKind

CODE = "code"
STRING = "string"
IDENTIFIER = "identifier"
DOLLAR = "dollar"
LINE_COMMENT = "line_comment"
BLOCK_COMMENT = "block_comment"

COMMENT_KINDS = (LINE_COMMENT, BLOCK_COMMENT)

DOLLAR_TAG_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

MARKER_RE = re.compile(r"^--[ \t]*sqlsync:[ \t]*(startStatement|endStatement)(?:[ \t]*:[ \t]*[0-9A-Za-z]+)?[ \t\r]*$")

KIND_PATTERNS: list[tuple[re.Pattern[str], StatementKind]] = [
    (
        re.compile(r"^CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:(?:TEMP|TEMPORARY|UNLOGGED)\s+)?TABLE\b", re.I),
        StatementKind.CREATE,
    ),
    (re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:FUNCTION|PROCEDURE)\b", re.I), StatementKind.FUNCTION),
    (re.compile(r"^ALTER\s+TABLE\b", re.I), StatementKind.ALTER),
    (re.compile(r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:CONSTRAINT\s+)?TRIGGER\b", re.I), StatementKind.TRIGGER),
    (re.compile(r"^CREATE\s+POLICY\b", re.I), StatementKind.POLICY),
]

Tracer = Callable[[str], None]


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _line_and_column(text: str, idx: int) -> str:
    line = text.count("\n", 0, idx) + 1
    col = idx - (text.rfind("\n", 0, idx) + 1) + 1
    return f"line {line}, column {col}"


def _scan_quoted(text: str, start: int, quote: str, backslash_escapes: bool = False) -> int:
    """Return the index just past the closing quote of the literal opened at ``start``."""
    idx = start + 1
    while idx < len(text):
        ch = text[idx]
        if backslash_escapes and ch == "\\":
            idx += 2
            continue
        if ch == quote:
            # A doubled quote is an escaped quote, not the end of the literal.
            if idx + 1 < len(text) and text[idx + 1] == quote:
                idx += 2
                continue
            return idx + 1
        idx += 1
    what = "string literal" if quote == "'" else "quoted identifier"
    raise StatementSyntaxError(f"Unterminated {what} starting at {_line_and_column(text, start)}")


def _dollar_tag_at(text: str, idx: int) -> str | None:
    if idx > 0 and (_is_word_char(text[idx - 1]) or text[idx - 1] == "$"):
        return None
    end = text.find("$", idx + 1)
    if end < 0:
        return None
    body = text[idx + 1 : end]
    if body and not DOLLAR_TAG_RE.fullmatch(body):
        return None
    return text[idx : end + 1]


def _scan_block_comment(text: str, start: int) -> int:
    depth = 0
    idx = start
    while idx < len(text):
        if text.startswith("/*", idx):
            depth += 1
            idx += 2
        elif text.startswith("*/", idx):
            depth -= 1
            idx += 2
            if depth == 0:
                return idx
        else:
            idx += 1
    raise StatementSyntaxError(f"Unterminated block comment starting at {_line_and_column(text, start)}")


def scan_segments(text: str) -> list[tuple[str, str]]:
    """Cut ``text`` into (kind, chunk) segments; concatenating the chunks gives ``text`` back."""
    segments: list[tuple[str, str]] = []
    code_start = 0
    idx = 0

    def flush_code(end: int) -> None:
        if end > code_start:
            segments.append((CODE, text[code_start:end]))

    while idx < len(text):
        ch = text[idx]
        end = -1
        kind = ""
        if ch == "'":
            escaped = idx > 0 and text[idx - 1] in "eE" and (idx < 2 or not _is_word_char(text[idx - 2]))
            end = _scan_quoted(text, idx, "'", backslash_escapes=escaped)
            kind = STRING
        elif ch == '"':
            end = _scan_quoted(text, idx, '"')
            kind = IDENTIFIER
        elif ch == "$":
            tag = _dollar_tag_at(text, idx)
            if tag is not None:
                close = text.find(tag, idx + len(tag))
                if close < 0:
                    raise StatementSyntaxError(
                        f"Unterminated dollar-quoted block {tag} starting at {_line_and_column(text, idx)}"
                    )
                end = close + len(tag)
                kind = DOLLAR
        elif text.startswith("--", idx):
            newline = text.find("\n", idx)
            end = len(text) if newline < 0 else newline
            kind = LINE_COMMENT
        elif text.startswith("/*", idx):
            end = _scan_block_comment(text, idx)
            kind = BLOCK_COMMENT

        if kind:
            flush_code(idx)
            segments.append((kind, text[idx:end]))
            idx = end
            code_start = end
        else:
            idx += 1

    flush_code(len(text))
    return segments


def _normalize_code(chunk: str) -> str:
    chunk = re.sub(r"\s+", " ", chunk)
    chunk = re.sub(r"\s+([,;)\]])", r"\1", chunk)
    return re.sub(r"([(\[])\s+", r"\1", chunk)


def normalize_segments(segments: list[tuple[str, str]]) -> str:
    out: list[str] = []
    code_run: list[str] = []
    for kind, chunk in segments:
        if kind == CODE:
            code_run.append(chunk)
        elif kind in COMMENT_KINDS:
            code_run.append(" ")
        else:
            out.append(_normalize_code("".join(code_run)))
            code_run = []
            out.append(chunk)
    out.append(_normalize_code("".join(code_run)))
    return "".join(out).strip()


def normalize_sql(text: str) -> str:
    """Strip comments and collapse whitespace outside literals."""
    return normalize_segments(scan_segments(text))


def statement_kind(normalized: str) -> StatementKind:
    for pattern, kind in KIND_PATTERNS:
        if pattern.match(normalized):
            return kind
    return StatementKind.UNKNOWN


def make_statement(raw: str) -> Statement | None:
    """Build a Statement from raw text, or None when it holds nothing but comments."""
    raw = raw.strip()
    normalized = normalize_sql(raw)
    if not normalized or normalized == ";":
        return None
    return Statement(
        raw=raw,
        normalized=normalized,
        checksum=sha256_hex(normalized),
        kind=statement_kind(normalized),
    )


def split_on_semicolons(text: str) -> list[Statement]:
    statements: list[Statement] = []
    buf: list[str] = []

    def flush() -> None:
        stmt = make_statement("".join(buf))
        if stmt is not None:
            statements.append(stmt)
        buf.clear()

    for kind, chunk in scan_segments(text):
        if kind != CODE:
            buf.append(chunk)
            continue
        start = 0
        for idx, ch in enumerate(chunk):
            if ch == ";":
                buf.append(chunk[start : idx + 1])
                flush()
                start = idx + 1
        buf.append(chunk[start:])

    flush()
    return statements


def own_line_comments(text: str) -> Iterator[tuple[int, int, str]]:
    """Yield (line_start, end, comment) for each ``--`` comment that opens its own line.

    Comment-like text inside strings, quoted identifiers and dollar-quoted
    bodies is not a comment and is never yielded.
    """
    offset = 0
    for kind, chunk in scan_segments(text):
        if kind == LINE_COMMENT:
            line_start = text.rfind("\n", 0, offset) + 1
            if not text[line_start:offset].strip(" \t"):
                yield line_start, offset + len(chunk), chunk
        offset += len(chunk)


def strip_markers(text: str) -> str:
    """``text`` without its statement marker comments."""
    out: list[str] = []
    cursor = 0
    for line_start, end, comment in own_line_comments(text):
        if MARKER_RE.match(comment):
            out.append(text[cursor:line_start])
            cursor = end
    out.append(text[cursor:])
    return "".join(out)


def _manual_spans(text: str) -> list[tuple[int, int, int, int]]:
    """Return (start_marker_begin, body_begin, body_end, end_marker_end) for each marker pair."""
    spans: list[tuple[int, int, int, int]] = []
    open_marker: tuple[int, int] | None = None
    for line_start, end, comment in own_line_comments(text):
        match = MARKER_RE.match(comment)
        if match is None:
            continue
        if match.group(1) == "startStatement":
            if open_marker is not None:
                raise StatementSyntaxError(f"Nested startStatement marker at {_line_and_column(text, line_start)}")
            open_marker = (line_start, end)
            continue
        if open_marker is None:
            raise StatementSyntaxError(
                f"endStatement marker without startStatement at {_line_and_column(text, line_start)}"
            )
        spans.append((open_marker[0], open_marker[1], line_start, end))
        open_marker = None
    if open_marker is not None:
        raise StatementSyntaxError(
            f"startStatement marker at {_line_and_column(text, open_marker[0])} is never closed"
        )
    return spans


def split_statements(text: str, trace: Tracer | None = None) -> list[Statement]:
    """Split one file's text into ordered statements.

    Manually delimited spans (``-- sqlsync: startStatement`` /
    ``-- sqlsync: endStatement``) become one statement each, regardless of the
    semicolons they contain. Everything outside them is split on top-level
    semicolons. Raises StatementSyntaxError on unbalanced quoting or markers.
    """
    statements: list[Statement] = []
    cursor = 0
    for marker_start, body_start, body_end, marker_end in _manual_spans(text):
        statements.extend(split_on_semicolons(text[cursor:marker_start]))
        stmt = make_statement(text[body_start:body_end])
        if stmt is not None:
            statements.append(stmt)
            if trace:
                trace(f"manual statement boundary: {stmt.checksum[:12]}")
        cursor = marker_end
    statements.extend(split_on_semicolons(text[cursor:]))
    if trace:
        trace(f"split into {len(statements)} statement(s)")
    return statements
