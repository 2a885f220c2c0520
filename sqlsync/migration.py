"""Render a FileChange set into migration SQL, and compute the next Snapshot."""

from __future__ import annotations

import datetime as dt
import re
from typing import Iterable

from .errors import UnresolvedFileErrors
from .models import (
    AlterKind,
    AlterOperation,
    ChangeKind,
    DeclarativeRecord,
    FileChange,
    Migration,
    MigrationState,
    MigrationStatement,
    ProcessedFile,
    Snapshot,
    SnapshotEntry,
    TrackedFile,
)
from .schema_differ import table_ref
from .tokenizer import LINE_COMMENT, normalize_sql, scan_segments, sha256_hex, strip_markers

OPERATION_GROUPS = [
    (AlterKind.RENAME_TABLE, "RENAMED TABLE"),
    (AlterKind.DROP_PRIMARY_KEY, "DROPPED PRIMARY KEY"),
    (AlterKind.RENAME_COLUMN, "RENAMED COLUMNS"),
    (AlterKind.ADD_COLUMN, "ADDED COLUMNS"),
    (AlterKind.MODIFY_COLUMN, "MODIFIED COLUMNS"),
    (AlterKind.ADD_PRIMARY_KEY, "ADDED PRIMARY KEY"),
    (AlterKind.DROP_COLUMN, "DROPPED COLUMNS"),
]


def declarative_record(processed: ProcessedFile) -> DeclarativeRecord:
    statement_checksum = processed.statements[0].checksum if processed.statements else ""
    return DeclarativeRecord(
        path=processed.path,
        raw_checksum=processed.raw_checksum,
        statement_checksum=statement_checksum,
        table=processed.table,
        raw_text=processed.raw_text,
    )


def snapshot_entry(processed: ProcessedFile) -> SnapshotEntry:
    if processed.declarative_table:
        return declarative_record(processed)
    return TrackedFile(
        path=processed.path,
        raw_checksum=processed.raw_checksum,
        statements=processed.statements,
        split_statements=processed.split_statements,
    )


def build_snapshot(files: Iterable[ProcessedFile]) -> Snapshot:
    """The Snapshot describing ``files`` as they are now."""
    files = list(files)
    errors = {f.path: f.error for f in files if f.error is not None}
    if errors:
        raise UnresolvedFileErrors(errors)
    return Snapshot({f.path: snapshot_entry(f) for f in files})


def is_empty_migration(text: str) -> bool:
    """True when nothing executable remains once comments and markers are gone."""
    return normalize_sql(text) == ""


def migration_file_name(name: str, now: dt.datetime) -> str:
    slug = re.sub(r"[^A-Za-z0-9_-]+", "_", name).strip("_") or "migration"
    return f"{now.strftime('%Y%m%d%H%M%S')}_{slug}.sql"


def _commented(text: str) -> list[str]:
    return [f"-- {line}".rstrip() for line in text.strip().splitlines()]


def _terminated(sql: str) -> str:
    sql = strip_markers(sql).strip()
    if normalize_sql(sql).endswith(";"):
        return sql
    segments = scan_segments(sql)
    if segments and segments[-1][0] == LINE_COMMENT:
        return sql + "\n;"
    return sql + ";"


class _Writer:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self.statements: list[MigrationStatement] = []

    def comment(self, *lines: str) -> None:
        self.lines.extend(lines)

    def blank(self) -> None:
        if self.lines and self.lines[-1] != "":
            self.lines.append("")

    def statement(self, sql: str, path: str) -> None:
        body = _terminated(sql)
        checksum = sha256_hex(normalize_sql(body))
        self.lines.append(f"-- sqlsync: startStatement:{checksum}")
        self.lines.append(body)
        self.lines.append(f"-- sqlsync: endStatement:{checksum}")
        self.statements.append(MigrationStatement(checksum=checksum, path=path))


def _write_added(out: _Writer, change: FileChange) -> None:
    current = change.current
    out.blank()
    out.comment(f"-- Added File: {change.path}")
    if current.declarative_table:
        out.comment("-- NOTE: File is declarative. Using its full definition.")
    if not current.statements:
        out.comment("-- NOTE: File contains no executable SQL.")
    for stmt in current.statements:
        out.statement(stmt.raw, change.path)


def _write_operations(out: _Writer, change: FileChange) -> None:
    out.comment("-- NOTE: File is declarative. Generated ALTER TABLE statements for incremental changes:")
    for kind, title in OPERATION_GROUPS:
        ops: list[AlterOperation] = [op for op in change.operations if op.kind == kind]
        if not ops:
            continue
        out.blank()
        out.comment(f"-- {title}:")
        for op in ops:
            if op.requires_confirmation:
                out.comment(
                    f"-- REVIEW: rename of {op.column} to {op.new_column} has low confidence "
                    f"({op.confidence:.2f}); confirm it is not a drop and add."
                )
            for sql in op.statements:
                out.statement(sql, change.path)


def _write_declarative_fallback(out: _Writer, change: FileChange) -> None:
    previous = change.previous
    current = change.current
    out.comment(
        "-- NOTE: Table structure could not be compared automatically. "
        "Write the ALTER statements for this change by hand."
    )
    if isinstance(previous, DeclarativeRecord) and previous.raw_text:
        out.comment("-- Previous definition:")
        out.comment(*_commented(previous.raw_text))
    elif isinstance(previous, TrackedFile) and previous.statements:
        out.comment("-- Previous definition:")
        for stmt in previous.statements:
            out.comment(*_commented(stmt.raw))
    out.comment("-- New definition:")
    out.comment(*_commented(current.raw_text))


def _write_statement_changes(out: _Writer, change: FileChange) -> None:
    deleted = [sc.statement for sc in change.statement_changes if sc.kind == ChangeKind.DELETED]
    added = [sc.statement for sc in change.statement_changes if sc.kind == ChangeKind.ADDED]
    if not deleted and not added:
        out.comment("-- NOTE: Only comments or formatting changed. Nothing to apply.")
        return
    if deleted:
        out.comment(f"-- Statements Deleted/Modified (Old Version) in {change.path}:")
        for stmt in deleted:
            out.comment(f"-- (Checksum: {stmt.checksum})")
            out.comment(*_commented(stmt.raw))
    if added:
        out.comment(f"-- Statements Added/Modified (New Version) in {change.path}:")
        for stmt in added:
            out.statement(stmt.raw, change.path)


def _write_whole_file(out: _Writer, change: FileChange) -> None:
    previous = change.previous
    current = change.current
    old = {stmt.checksum for stmt in previous.statements}
    new = {stmt.checksum for stmt in current.statements}
    if old == new:
        out.comment("-- NOTE: Only comments or formatting changed. Nothing to apply.")
        return
    if not current.statements:
        out.comment("-- NOTE: File no longer contains executable SQL. Previous content:")
        for stmt in previous.statements:
            out.comment(*_commented(stmt.raw))
        return
    for stmt in current.statements:
        out.statement(stmt.raw, change.path)


def _write_modified(out: _Writer, change: FileChange) -> None:
    out.blank()
    out.comment(f"-- Modified File: {change.path}")
    if change.operations:
        _write_operations(out, change)
    elif change.current.declarative_table or isinstance(change.previous, DeclarativeRecord):
        _write_declarative_fallback(out, change)
    elif change.current.split_statements:
        _write_statement_changes(out, change)
    else:
        _write_whole_file(out, change)


def _write_deleted(out: _Writer, change: FileChange) -> None:
    previous = change.previous
    out.blank()
    out.comment(f"-- Deleted File: {change.path}")
    if isinstance(previous, DeclarativeRecord) and previous.table is not None:
        out.comment(
            f"-- WARNING: Table {previous.table.qualified_name} was deleted. "
            "The following DROP destroys its data; review before applying."
        )
        out.statement(f"DROP TABLE IF EXISTS {table_ref(previous.table)};", change.path)
    elif isinstance(previous, DeclarativeRecord):
        out.comment("-- WARNING: Declarative table file was deleted but its structure is unknown.")
        out.comment("-- Add a DROP TABLE statement manually if the table should be removed.")
    elif isinstance(previous, TrackedFile):
        out.comment("-- WARNING: No DROP statements are generated for deleted files; add them manually if needed.")
        for stmt in previous.statements:
            out.comment(*_commented(stmt.raw))
    else:
        raise TypeError(f"Unknown snapshot entry for {change.path}: {type(previous).__name__}")


SECTIONS = [
    (ChangeKind.ADDED, "ADDED FILES", _write_added),
    (ChangeKind.MODIFIED, "MODIFIED FILES", _write_modified),
    (ChangeKind.DELETED, "DELETED FILES", _write_deleted),
]


def synthesize_migration(
    changes: Iterable[FileChange],
    name: str,
    now: dt.datetime | None = None,
) -> Migration:
    """Assemble the migration script and its MigrationState."""
    now = now or dt.datetime.now(dt.timezone.utc)
    changes = list(changes)
    created_at = now.isoformat(timespec="seconds")

    out = _Writer()
    out.comment(
        f"-- Migration: {name}",
        f"-- Generated At: {created_at}",
        "-- Based on detected changes between states.",
    )
    if not any(c.kind != ChangeKind.UNMODIFIED for c in changes):
        out.blank()
        out.comment("-- No SQL changes detected.")

    for kind, title, write in SECTIONS:
        selected = [c for c in changes if c.kind == kind]
        if not selected:
            continue
        out.blank()
        out.comment(f"-- >>> {title} <<<")
        for change in selected:
            write(out, change)
        out.blank()
        out.comment(f"-- >>> END {title} <<<")

    content = "\n".join(out.lines) + "\n"
    declarative = {
        c.path: declarative_record(c.current)
        for c in changes
        if c.current is not None and c.current.declarative_table
    }
    state = MigrationState(
        name=name,
        created_at=created_at,
        checksum=sha256_hex(content),
        statements=tuple(out.statements),
        declarative_tables=declarative,
    )
    return Migration(
        name=name,
        file_name=migration_file_name(name, now),
        content=content,
        state=state,
        is_empty=is_empty_migration(content),
    )
