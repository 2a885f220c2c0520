"""Classify current files against the last recorded Snapshot."""

from __future__ import annotations

from typing import Callable, Iterable

from .errors import UnresolvedFileErrors
from .models import (
    ChangeKind,
    DeclarativeRecord,
    FileChange,
    ProcessedFile,
    Snapshot,
    SnapshotEntry,
    Statement,
    StatementChange,
    TrackedFile,
)
from .schema_differ import diff_tables

Tracer = Callable[[str], None]


def statement_changes(previous: tuple[Statement, ...], current: tuple[Statement, ...]) -> tuple[StatementChange, ...]:
    """Deleted then added statements, compared by checksum."""
    old = {stmt.checksum for stmt in previous}
    new = {stmt.checksum for stmt in current}
    out = [StatementChange(ChangeKind.DELETED, stmt) for stmt in previous if stmt.checksum not in new]
    out.extend(StatementChange(ChangeKind.ADDED, stmt) for stmt in current if stmt.checksum not in old)
    return tuple(out)


def classify_file(current: ProcessedFile, previous: SnapshotEntry, trace: Tracer | None = None) -> FileChange:
    """Compare one file present both now and in the snapshot."""
    path = current.path

    def change(kind: ChangeKind, **kwargs) -> FileChange:
        return FileChange(kind=kind, path=path, previous=previous, current=current, **kwargs)

    if isinstance(previous, DeclarativeRecord):
        if not current.declarative_table:
            if trace:
                trace(f"{path}: no longer declarative")
            return change(ChangeKind.MODIFIED)
        if previous.table is not None and current.table is not None:
            ops = diff_tables(previous.table, current.table, trace)
            if ops:
                return change(ChangeKind.MODIFIED, operations=ops)
            return change(ChangeKind.UNMODIFIED)
        if previous.raw_checksum != current.raw_checksum:
            return change(ChangeKind.MODIFIED)
        return change(ChangeKind.UNMODIFIED)

    if isinstance(previous, TrackedFile):
        if current.declarative_table:
            if trace:
                trace(f"{path}: became declarative")
            return change(ChangeKind.MODIFIED)
        if previous.raw_checksum == current.raw_checksum:
            return change(ChangeKind.UNMODIFIED)
        if current.split_statements:
            return change(ChangeKind.MODIFIED, statement_changes=statement_changes(previous.statements, current.statements))
        return change(ChangeKind.MODIFIED)

    raise TypeError(f"Unknown snapshot entry for {path}: {type(previous).__name__}")


def diff_state(
    files: Iterable[ProcessedFile],
    snapshot: Snapshot,
    include_unmodified: bool = False,
    trace: Tracer | None = None,
) -> list[FileChange]:
    """Compute the FileChange set between ``files`` and ``snapshot``.

    Refuses to diff while any file carries a processing error. The result is
    sorted by path.
    """
    current = {f.path: f for f in files}
    errors = {path: f.error for path, f in current.items() if f.error is not None}
    if errors:
        raise UnresolvedFileErrors(errors)

    changes: list[FileChange] = []
    for path, processed in current.items():
        previous = snapshot.get(path)
        if previous is None:
            changes.append(FileChange(kind=ChangeKind.ADDED, path=path, current=processed))
            continue
        item = classify_file(processed, previous, trace)
        if item.kind != ChangeKind.UNMODIFIED or include_unmodified:
            changes.append(item)

    for path, previous in snapshot.entries.items():
        if path not in current:
            changes.append(FileChange(kind=ChangeKind.DELETED, path=path, previous=previous))

    changes.sort(key=lambda c: c.path)
    if trace:
        counts = {kind: sum(1 for c in changes if c.kind == kind) for kind in ChangeKind}
        trace(", ".join(f"{counts[kind]} {kind.value}" for kind in ChangeKind))
    return changes
