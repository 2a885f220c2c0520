"""Turn one SQL source file into a ProcessedFile (checksums, statements, table structure)."""

from __future__ import annotations

import dataclasses
import re
from pathlib import Path
from typing import Callable

from .errors import DirectiveConflict, MultiStatementTableFile, SqlSyncError, TableParseFailure
from .models import ProcessedFile, StatementKind
from .table_parser import parse_create_table
from .tokenizer import make_statement, own_line_comments, sha256_hex, split_statements

DIRECTIVE_RE = re.compile(r"^--[ \t]*sqlsync:[ \t]*(.*?)[ \t\r]*$")

KNOWN_DIRECTIVES = {
    "declarativetable": "declarative_table",
    "splitstatements": "split_statements",
}

Tracer = Callable[[str], None]


@dataclasses.dataclass(frozen=True)
class Directives:
    declarative_table: bool = False
    split_statements: bool = False


def parse_directives(text: str, trace: Tracer | None = None) -> Directives:
    """Read ``-- sqlsync: key=value[, key=value]`` comment lines."""
    values: dict[str, bool] = {}
    for _, _, comment in own_line_comments(text):
        match = DIRECTIVE_RE.match(comment)
        if match is None:
            continue
        body = match.group(1)
        if re.match(r"^(?:startStatement|endStatement)\b", body):
            continue
        for part in body.split(","):
            if not part.strip():
                continue
            key, sep, value = part.partition("=")
            field = KNOWN_DIRECTIVES.get(key.strip().lower())
            flag = value.strip().lower()
            if not sep or field is None or flag not in ("true", "false"):
                if trace:
                    trace(f"ignoring unknown directive {part.strip()!r}")
                continue
            values[field] = flag == "true"
    return Directives(**values)


def _failed(path: str, text: str, directives: Directives, error: SqlSyncError) -> ProcessedFile:
    return ProcessedFile(
        path=path,
        raw_checksum=sha256_hex(text),
        raw_text=text,
        declarative_table=directives.declarative_table,
        split_statements=directives.split_statements,
        error=error,
    )


def process_file(path: str, text: str, trace: Tracer | None = None) -> ProcessedFile:
    """Process the text of one source file.

    Never raises for problems in the file itself: they are captured in the
    returned ProcessedFile's ``error`` and its statements are left empty.
    """
    directives = Directives()
    try:
        directives = parse_directives(text, trace)
        if directives.declarative_table and directives.split_statements:
            raise DirectiveConflict(
                f"{path}: 'declarativeTable=true' and 'splitStatements=true' cannot be used in the same file"
            )

        statements = split_statements(text, trace)
        has_create_table = any(stmt.kind == StatementKind.CREATE for stmt in statements)
        if has_create_table and len(statements) != 1:
            raise MultiStatementTableFile(
                f"{path}: files containing a CREATE TABLE statement must not contain other "
                f"executable SQL statements (found {len(statements)})"
            )

        table = None
        if directives.declarative_table:
            if not has_create_table:
                raise TableParseFailure(f"{path}: marked 'declarativeTable=true' but no CREATE TABLE found")
            try:
                table = parse_create_table(statements[0].raw, trace)
            except TableParseFailure as exc:
                raise TableParseFailure(f"{path}: {exc}") from exc
            whole = make_statement(text)
            statements = [whole] if whole is not None else []
        elif not directives.split_statements:
            whole = make_statement(text)
            statements = [whole] if whole is not None else []
    except SqlSyncError as exc:
        if trace:
            trace(f"{path}: {type(exc).__name__}: {exc}")
        return _failed(path, text, directives, exc)

    if trace:
        mode = "declarative" if table else ("split" if directives.split_statements else "whole-file")
        trace(f"{path}: {len(statements)} statement(s), {mode}")

    return ProcessedFile(
        path=path,
        raw_checksum=sha256_hex(text),
        raw_text=text,
        statements=tuple(statements),
        table=table,
        declarative_table=directives.declarative_table,
        split_statements=directives.split_statements,
    )


def process_path(base_dir: Path, relative_path: str, trace: Tracer | None = None) -> ProcessedFile:
    """Read ``base_dir / relative_path`` and process it."""
    raw = (base_dir / relative_path).read_bytes()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        error = SqlSyncError(f"{relative_path}: file is not valid UTF-8 ({exc.reason} at byte {exc.start})")
        return ProcessedFile(
            path=relative_path,
            raw_checksum=sha256_hex(raw.decode("utf-8", errors="replace")),
            raw_text="",
            error=error,
        )
    return process_file(relative_path, text, trace)
