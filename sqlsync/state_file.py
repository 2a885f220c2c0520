"""JSON persistence of the Snapshot and migration history (``sqlsync-state.json``)."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any

from .errors import StateFileError
from .models import (
    ColumnDefinition,
    DeclarativeRecord,
    ForeignKey,
    Migration,
    MigrationState,
    MigrationStatement,
    Snapshot,
    SnapshotEntry,
    Statement,
    StatementKind,
    TableDefinition,
    TrackedFile,
)

STATE_VERSION = 1


@dataclasses.dataclass(frozen=True)
class SyncState:
    version: int = STATE_VERSION
    migration_history: tuple[str, ...] = ()
    migrations: dict[str, MigrationState] = dataclasses.field(default_factory=dict)
    snapshot: Snapshot = dataclasses.field(default_factory=Snapshot)


def statement_to_dict(stmt: Statement) -> dict:
    return {"raw": stmt.raw, "normalized": stmt.normalized, "checksum": stmt.checksum, "kind": stmt.kind.value}


def statement_from_dict(raw: dict) -> Statement:
    return Statement(
        raw=raw["raw"],
        normalized=raw["normalized"],
        checksum=raw["checksum"],
        kind=StatementKind(raw.get("kind", StatementKind.UNKNOWN.value)),
    )


def column_to_dict(col: ColumnDefinition) -> dict:
    out = {
        "name": col.name,
        "dataType": col.data_type,
        "nullable": col.nullable,
        "default": col.default,
        "primaryKey": col.primary_key,
        "unique": col.unique,
        "check": col.check,
        "foreignKey": None,
    }
    if col.foreign_key is not None:
        out["foreignKey"] = {
            "table": col.foreign_key.table,
            "column": col.foreign_key.column,
            "onDelete": col.foreign_key.on_delete,
            "onUpdate": col.foreign_key.on_update,
        }
    return out


def column_from_dict(raw: dict) -> ColumnDefinition:
    fk = raw.get("foreignKey")
    return ColumnDefinition(
        name=raw["name"],
        data_type=raw["dataType"],
        nullable=raw.get("nullable", True),
        default=raw.get("default"),
        primary_key=raw.get("primaryKey", False),
        unique=raw.get("unique", False),
        check=raw.get("check"),
        foreign_key=ForeignKey(
            table=fk["table"],
            column=fk.get("column"),
            on_delete=fk.get("onDelete"),
            on_update=fk.get("onUpdate"),
        )
        if fk
        else None,
    )


def table_to_dict(table: TableDefinition) -> dict:
    return {"schema": table.schema, "name": table.name, "columns": [column_to_dict(c) for c in table.columns]}


def table_from_dict(raw: dict) -> TableDefinition:
    return TableDefinition(
        name=raw["name"],
        schema=raw.get("schema", "public"),
        columns=tuple(column_from_dict(c) for c in raw["columns"]),
    )


def record_to_dict(record: DeclarativeRecord) -> dict:
    return {
        "type": "declarative",
        "rawChecksum": record.raw_checksum,
        "statementChecksum": record.statement_checksum,
        "table": table_to_dict(record.table) if record.table is not None else None,
        "rawText": record.raw_text,
    }


def entry_to_dict(entry: SnapshotEntry) -> dict:
    if isinstance(entry, DeclarativeRecord):
        return record_to_dict(entry)
    if isinstance(entry, TrackedFile):
        return {
            "type": "file",
            "rawChecksum": entry.raw_checksum,
            "splitStatements": entry.split_statements,
            "statements": [statement_to_dict(s) for s in entry.statements],
        }
    raise TypeError(f"Unknown snapshot entry: {type(entry).__name__}")


def entry_from_dict(path: str, raw: dict) -> SnapshotEntry:
    kind = raw.get("type")
    if kind == "declarative":
        return DeclarativeRecord(
            path=path,
            raw_checksum=raw["rawChecksum"],
            statement_checksum=raw["statementChecksum"],
            table=table_from_dict(raw["table"]) if raw.get("table") else None,
            raw_text=raw.get("rawText", ""),
        )
    if kind == "file":
        return TrackedFile(
            path=path,
            raw_checksum=raw["rawChecksum"],
            statements=tuple(statement_from_dict(s) for s in raw.get("statements", [])),
            split_statements=raw.get("splitStatements", False),
        )
    raise StateFileError(f"{path}: unknown entry type {kind!r}")


def migration_state_to_dict(state: MigrationState) -> dict:
    return {
        "name": state.name,
        "createdAt": state.created_at,
        "fileChecksum": state.checksum,
        "statements": [{"checksum": s.checksum, "filePath": s.path} for s in state.statements],
        "declarativeTables": {path: record_to_dict(r) for path, r in state.declarative_tables.items()},
    }


def migration_state_from_dict(raw: dict) -> MigrationState:
    return MigrationState(
        name=raw["name"],
        created_at=raw["createdAt"],
        checksum=raw["fileChecksum"],
        statements=tuple(MigrationStatement(checksum=s["checksum"], path=s["filePath"]) for s in raw["statements"]),
        declarative_tables={
            path: entry_from_dict(path, r) for path, r in raw.get("declarativeTables", {}).items()
        },
    )


def state_to_dict(state: SyncState) -> dict:
    return {
        "version": state.version,
        "migrationHistory": list(state.migration_history),
        "migrations": {name: migration_state_to_dict(m) for name, m in state.migrations.items()},
        "files": {path: entry_to_dict(entry) for path, entry in sorted(state.snapshot.entries.items())},
    }


def state_from_dict(raw: Any) -> SyncState:
    if not isinstance(raw, dict):
        raise StateFileError("Expected a JSON object at the top level")
    version = raw.get("version")
    if version != STATE_VERSION:
        raise StateFileError(f"Unsupported state file version {version!r}")
    try:
        return SyncState(
            version=version,
            migration_history=tuple(raw.get("migrationHistory", [])),
            migrations={name: migration_state_from_dict(m) for name, m in raw.get("migrations", {}).items()},
            snapshot=Snapshot({path: entry_from_dict(path, e) for path, e in raw.get("files", {}).items()}),
        )
    except StateFileError:
        raise
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise StateFileError(f"Malformed state file: {type(exc).__name__}: {exc}") from exc


def load_state(path: Path) -> SyncState:
    """Read the state file, or return an empty state when it does not exist yet."""
    if not path.exists():
        return SyncState()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise StateFileError(f"{path}: invalid JSON: {exc}") from exc
    try:
        return state_from_dict(raw)
    except StateFileError as exc:
        raise StateFileError(f"{path}: {exc}") from exc


def record_migration(state: SyncState, migration: Migration, snapshot: Snapshot) -> SyncState:
    """The state after ``migration`` has been written."""
    if migration.file_name in state.migrations:
        raise StateFileError(f"Migration {migration.file_name} is already recorded")
    return dataclasses.replace(
        state,
        migration_history=state.migration_history + (migration.file_name,),
        migrations={**state.migrations, migration.file_name: migration.state},
        snapshot=snapshot,
    )


def save_state(path: Path, state: SyncState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(state_to_dict(state), indent=2) + "\n", encoding="utf-8")
