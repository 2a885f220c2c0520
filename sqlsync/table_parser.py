"""Structural parser for a single PostgreSQL CREATE TABLE statement."""

from __future__ import annotations

import dataclasses
import re
from typing import Callable, Iterator

from .errors import TableParseFailure
from .models import ColumnDefinition, ForeignKey, TableDefinition
from .tokenizer import CODE, COMMENT_KINDS, normalize_sql, scan_segments

IDENT = r'(?:"(?:[^"]|"")+"|[A-Za-z_][A-Za-z0-9_$]*)'

TABLE_HEAD_RE = re.compile(
    r"^CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:(?:TEMP|TEMPORARY|UNLOGGED)\s+)?TABLE\s+"
    r"(?:IF\s+NOT\s+EXISTS\s+)?"
    rf"(?:(?P<schema>{IDENT})\s*\.\s*)?(?P<table>{IDENT})\s*\(",
    flags=re.I,
)

CONSTRAINT_PREFIX = rf"(?:CONSTRAINT\s+{IDENT}\s+)?"
TABLE_PK_RE = re.compile(rf"^{CONSTRAINT_PREFIX}PRIMARY\s+KEY\s*\((.+)\)", flags=re.I | re.S)
TABLE_UNIQUE_RE = re.compile(rf"^{CONSTRAINT_PREFIX}UNIQUE\s*\(\s*({IDENT})\s*\)\s*$", flags=re.I)
TABLE_FK_RE = re.compile(
    rf"^{CONSTRAINT_PREFIX}FOREIGN\s+KEY\s*\(\s*({IDENT})\s*\)\s*(REFERENCES\b.*)$",
    flags=re.I | re.S,
)
NOT_A_COLUMN_RE = re.compile(r"^(?:CONSTRAINT|PRIMARY\s+KEY|FOREIGN\s+KEY|UNIQUE|CHECK|EXCLUDE|LIKE)\b", flags=re.I)

COLUMN_KEYWORDS = {
    "NOT",
    "NULL",
    "DEFAULT",
    "PRIMARY",
    "UNIQUE",
    "REFERENCES",
    "CHECK",
    "CONSTRAINT",
    "COLLATE",
    "GENERATED",
    "DEFERRABLE",
    "INITIALLY",
}

OPERATOR_CHARS = set("+-*/<>=~!@#%^&|`?:")

Tracer = Callable[[str], None]


def unquote_ident(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        return text[1:-1].replace('""', '"')
    return text


def _code_chars(text: str) -> Iterator[tuple[int, str]]:
    offset = 0
    for kind, chunk in scan_segments(text):
        if kind == CODE:
            for idx, ch in enumerate(chunk):
                yield offset + idx, ch
        offset += len(chunk)


def matching_paren(text: str, open_idx: int) -> int:
    depth = 0
    for idx, ch in _code_chars(text):
        if idx < open_idx:
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return idx
    return -1


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split on ``separator`` outside parentheses, brackets and quotes."""
    cuts: list[int] = []
    paren = 0
    bracket = 0
    for idx, ch in _code_chars(text):
        if ch == "(":
            paren += 1
        elif ch == ")":
            paren = max(0, paren - 1)
        elif ch == "[":
            bracket += 1
        elif ch == "]":
            bracket = max(0, bracket - 1)
        elif paren == 0 and bracket == 0:
            if ch == separator or (separator == " " and ch.isspace()):
                cuts.append(idx)

    out: list[str] = []
    start = 0
    for cut in cuts + [len(text)]:
        token = text[start:cut].strip()
        if token:
            out.append(token)
        start = cut + 1
    return out


def _keyword(word: str) -> str | None:
    m = re.match(r"[A-Za-z]+", word)
    if not m:
        return None
    kw = m.group(0).upper()
    rest = word[m.end() :]
    if kw in COLUMN_KEYWORDS and (not rest or rest.startswith("(")):
        return kw
    return None


def canonical_type(text: str) -> str:
    parts = text.split('"')
    for idx in range(0, len(parts), 2):
        chunk = re.sub(r"\s+", " ", parts[idx]).upper()
        chunk = re.sub(r"\s+([(\[,\])])", r"\1", chunk)
        chunk = re.sub(r"([(\[,])\s+", r"\1", chunk)
        parts[idx] = chunk
    return '"'.join(parts).strip()


def _char_class(ch: str) -> str:
    if ch in OPERATOR_CHARS:
        return "operator"
    if ch.isalnum() or ch in "_$'\"":
        return "word"
    return "punct"


def _keeps_space(left: str, right: str) -> bool:
    # Only a space between two words or two operator characters changes how the text lexes.
    if not left or not right:
        return False
    kind = _char_class(left)
    return kind != "punct" and kind == _char_class(right)


def canonical_expression(text: str) -> str:
    """DEFAULT / CHECK expression text with whitespace made canonical outside literals.

    ``(1 + 2)`` and ``(1+2)`` give the same result, ``'a  b'`` is left alone.
    """
    segments: list[tuple[str, str]] = []
    for kind, chunk in scan_segments(text):
        if kind in COMMENT_KINDS:
            kind, chunk = CODE, " "
        if kind == CODE and segments and segments[-1][0] == CODE:
            segments[-1] = (CODE, segments[-1][1] + chunk)
        else:
            segments.append((kind, chunk))
    out: list[str] = []
    for idx, (kind, chunk) in enumerate(segments):
        if kind != CODE:
            out.append(chunk)
            continue
        chunk = re.sub(r"\s+", " ", chunk)
        before = segments[idx - 1][1][-1] if idx > 0 else ""
        after = segments[idx + 1][1][0] if idx + 1 < len(segments) else ""
        kept: list[str] = []
        for pos, ch in enumerate(chunk):
            if ch == " ":
                left = chunk[pos - 1] if pos > 0 else before
                right = chunk[pos + 1] if pos + 1 < len(chunk) else after
                if not _keeps_space(left, right):
                    continue
            kept.append(ch)
        out.append("".join(kept))
    return "".join(out).strip()


def _strip_parens(text: str) -> str:
    text = text.strip()
    while text.startswith("(") and matching_paren(text, 0) == len(text) - 1:
        text = text[1:-1].strip()
    return text


def _parse_references(words: list[str], start: int) -> tuple[ForeignKey, int]:
    """Parse ``REFERENCES table [(col)] [ON DELETE x] [ON UPDATE y]`` starting at the REFERENCES word."""
    idx = start + 1
    if idx >= len(words):
        raise TableParseFailure("REFERENCES without a target table")
    target = words[idx]
    idx += 1
    column: str | None = None
    paren = target.find("(")
    if paren > 0:
        column = _strip_parens(target[paren:])
        target = target[:paren]
    elif idx < len(words) and words[idx].startswith("("):
        column = _strip_parens(words[idx])
        idx += 1

    on_delete: str | None = None
    on_update: str | None = None
    while idx < len(words):
        word = words[idx].upper()
        if word == "ON" and idx + 2 < len(words):
            event = words[idx + 1].upper()
            action_words = [words[idx + 2].upper()]
            idx += 3
            if action_words[0] in ("SET", "NO") and idx < len(words):
                action_words.append(words[idx].upper())
                idx += 1
            action = " ".join(action_words)
            if event == "DELETE":
                on_delete = action
            elif event == "UPDATE":
                on_update = action
        elif word == "MATCH":
            idx += 2
        else:
            break

    fk = ForeignKey(
        table=target.strip(),
        column=unquote_ident(column) if column else None,
        on_delete=on_delete,
        on_update=on_update,
    )
    return fk, idx


def parse_column_definition(
    entry: str,
    primary_key_columns: frozenset[str] = frozenset(),
) -> ColumnDefinition:
    words = split_top_level(entry, " ")
    if not words:
        raise TableParseFailure("Empty column definition")
    name = unquote_ident(words[0])

    idx = 1
    while idx < len(words) and _keyword(words[idx]) is None:
        idx += 1
    if idx == 1:
        raise TableParseFailure(f"Column {name!r} has no data type: {entry}")
    data_type = canonical_type(" ".join(words[1:idx]))

    not_null = False
    explicit_null = False
    default: str | None = None
    primary_key = name in primary_key_columns
    unique = False
    foreign_key: ForeignKey | None = None
    check: str | None = None

    while idx < len(words):
        kw = _keyword(words[idx])
        if kw == "NOT" and idx + 1 < len(words) and _keyword(words[idx + 1]) == "NULL":
            not_null = True
            idx += 2
        elif kw == "NULL":
            explicit_null = True
            idx += 1
        elif kw == "DEFAULT":
            end = idx + 2
            while end < len(words) and _keyword(words[end]) is None:
                end += 1
            default = canonical_expression(" ".join(words[idx + 1 : end])) or None
            idx = end
        elif kw == "PRIMARY":
            primary_key = True
            idx += 2
        elif kw == "UNIQUE":
            unique = True
            idx += 1
        elif kw == "REFERENCES":
            foreign_key, idx = _parse_references(words, idx)
        elif kw == "CHECK":
            word = words[idx]
            if len(word) > len("CHECK"):
                check = canonical_expression(_strip_parens(word[len("CHECK") :]))
                idx += 1
            elif idx + 1 < len(words):
                check = canonical_expression(_strip_parens(words[idx + 1]))
                idx += 2
            else:
                raise TableParseFailure(f"CHECK without an expression on column {name!r}")
        elif kw in ("CONSTRAINT", "COLLATE"):
            idx += 2
        else:
            # GENERATED ..., DEFERRABLE and anything unrecognised.
            idx += 1

    if not_null:
        nullable = False
    elif explicit_null:
        nullable = True
    else:
        nullable = not primary_key

    return ColumnDefinition(
        name=name,
        data_type=data_type,
        nullable=nullable,
        default=default,
        primary_key=primary_key,
        unique=unique,
        foreign_key=foreign_key,
        check=check,
    )


def _table_constraints(
    entries: list[str],
) -> tuple[frozenset[str], set[str], dict[str, ForeignKey]]:
    primary_key: set[str] = set()
    unique: set[str] = set()
    foreign_keys: dict[str, ForeignKey] = {}
    for entry in entries:
        m = TABLE_PK_RE.match(entry)
        if m:
            primary_key.update(unquote_ident(col) for col in split_top_level(m.group(1)))
            continue
        m = TABLE_UNIQUE_RE.match(entry)
        if m:
            unique.add(unquote_ident(m.group(1)))
            continue
        m = TABLE_FK_RE.match(entry)
        if m:
            fk, _ = _parse_references(split_top_level(m.group(2), " "), 0)
            foreign_keys[unquote_ident(m.group(1))] = fk
    return frozenset(primary_key), unique, foreign_keys


def parse_create_table(sql: str, trace: Tracer | None = None) -> TableDefinition:
    """Extract the table name and its columns from a CREATE TABLE statement.

    Raises TableParseFailure when the statement cannot be decomposed.
    """
    text = normalize_sql(sql)
    m = TABLE_HEAD_RE.match(text)
    if not m:
        raise TableParseFailure("Statement is not a CREATE TABLE with a column block")

    schema = unquote_ident(m.group("schema")) if m.group("schema") else "public"
    name = unquote_ident(m.group("table"))

    open_idx = m.end() - 1
    close_idx = matching_paren(text, open_idx)
    if close_idx < 0:
        raise TableParseFailure(f"Unbalanced column block in CREATE TABLE {schema}.{name}")

    entries = split_top_level(text[open_idx + 1 : close_idx])
    pk_columns, unique_columns, fk_columns = _table_constraints(entries)

    columns: list[ColumnDefinition] = []
    for entry in entries:
        if NOT_A_COLUMN_RE.match(entry):
            continue
        col = parse_column_definition(entry, pk_columns)
        if col.name in unique_columns and not col.unique:
            col = dataclasses.replace(col, unique=True)
        if col.name in fk_columns and col.foreign_key is None:
            col = dataclasses.replace(col, foreign_key=fk_columns[col.name])
        columns.append(col)

    if not columns:
        raise TableParseFailure(f"No columns found in CREATE TABLE {schema}.{name}")

    if trace:
        trace(f"parsed table {schema}.{name} with {len(columns)} column(s)")
    return TableDefinition(name=name, columns=tuple(columns), schema=schema)
