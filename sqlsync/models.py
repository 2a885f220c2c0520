"""Data model shared by the tokenizer, parsers, diff engine and synthesizer."""

from __future__ import annotations

import dataclasses
import enum
import re
from typing import Union


class StatementKind(str, enum.Enum):
    CREATE = "create"
    ALTER = "alter"
    FUNCTION = "function"
    TRIGGER = "trigger"
    POLICY = "policy"
    UNKNOWN = "unknown"


class ChangeKind(str, enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNMODIFIED = "unmodified"


class AlterKind(str, enum.Enum):
    ADD_COLUMN = "ADD_COLUMN"
    DROP_COLUMN = "DROP_COLUMN"
    MODIFY_COLUMN = "MODIFY_COLUMN"
    RENAME_COLUMN = "RENAME_COLUMN"
    RENAME_TABLE = "RENAME_TABLE"
    DROP_PRIMARY_KEY = "DROP_PRIMARY_KEY"
    ADD_PRIMARY_KEY = "ADD_PRIMARY_KEY"


PLAIN_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


def quote_ident(name: str) -> str:
    if PLAIN_IDENTIFIER_RE.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


@dataclasses.dataclass(frozen=True)
class Statement:
    raw: str
    normalized: str
    checksum: str
    kind: StatementKind = StatementKind.UNKNOWN


@dataclasses.dataclass(frozen=True)
class ForeignKey:
    table: str
    column: str | None = None
    on_delete: str | None = None
    on_update: str | None = None


@dataclasses.dataclass(frozen=True)
class ColumnDefinition:
    name: str
    data_type: str
    nullable: bool = True
    default: str | None = None
    primary_key: bool = False
    unique: bool = False
    foreign_key: ForeignKey | None = None
    check: str | None = None

    def __post_init__(self) -> None:
        # Primary keys are always NOT NULL and UNIQUE.
        if self.primary_key:
            object.__setattr__(self, "nullable", False)
            object.__setattr__(self, "unique", True)

    def same_shape(self, other: ColumnDefinition) -> bool:
        """True when both columns agree on everything except their name."""
        return dataclasses.replace(self, name=other.name) == other


@dataclasses.dataclass(frozen=True)
class TableDefinition:
    name: str
    columns: tuple[ColumnDefinition, ...]
    schema: str = "public"

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def sql_name(self) -> str:
        return f"{quote_ident(self.schema)}.{quote_ident(self.name)}"

    def column(self, name: str) -> ColumnDefinition | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None


@dataclasses.dataclass(frozen=True)
class ProcessedFile:
    path: str
    raw_checksum: str
    raw_text: str
    statements: tuple[Statement, ...] = ()
    table: TableDefinition | None = None
    declarative_table: bool = False
    split_statements: bool = False
    error: Exception | None = None

    def __post_init__(self) -> None:
        if self.error is not None and (self.statements or self.table is not None):
            raise ValueError(f"{self.path}: a failed file cannot carry statements")


@dataclasses.dataclass(frozen=True)
class TrackedFile:
    """Snapshot record of a non-declarative file."""

    path: str
    raw_checksum: str
    statements: tuple[Statement, ...] = ()
    split_statements: bool = False


@dataclasses.dataclass(frozen=True)
class DeclarativeRecord:
    """Snapshot record of a declarative table file."""

    path: str
    raw_checksum: str
    statement_checksum: str
    table: TableDefinition | None
    raw_text: str = ""


SnapshotEntry = Union[TrackedFile, DeclarativeRecord]


@dataclasses.dataclass(frozen=True)
class Snapshot:
    entries: dict[str, SnapshotEntry] = dataclasses.field(default_factory=dict)

    def get(self, path: str) -> SnapshotEntry | None:
        return self.entries.get(path)

    def __contains__(self, path: object) -> bool:
        return path in self.entries

    def __len__(self) -> int:
        return len(self.entries)


@dataclasses.dataclass(frozen=True)
class StatementChange:
    kind: ChangeKind
    statement: Statement


@dataclasses.dataclass(frozen=True)
class AlterOperation:
    kind: AlterKind
    table: str
    column: str
    statements: tuple[str, ...]
    new_column: str | None = None
    confidence: float | None = None
    requires_confirmation: bool = False

    @property
    def sql(self) -> str:
        return "\n".join(self.statements)


@dataclasses.dataclass(frozen=True)
class FileChange:
    kind: ChangeKind
    path: str
    previous: SnapshotEntry | None = None
    current: ProcessedFile | None = None
    statement_changes: tuple[StatementChange, ...] = ()
    operations: tuple[AlterOperation, ...] = ()


@dataclasses.dataclass(frozen=True)
class MigrationStatement:
    checksum: str
    path: str


@dataclasses.dataclass(frozen=True)
class MigrationState:
    name: str
    created_at: str
    checksum: str
    statements: tuple[MigrationStatement, ...] = ()
    declarative_tables: dict[str, DeclarativeRecord] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class Migration:
    name: str
    file_name: str
    content: str
    state: MigrationState
    is_empty: bool
