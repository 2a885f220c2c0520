"""Column-level diff of two TableDefinitions into ALTER TABLE operations."""

from __future__ import annotations

import dataclasses
from typing import Callable

from .models import AlterKind, AlterOperation, ColumnDefinition, ForeignKey, TableDefinition, quote_ident

RENAME_THRESHOLD = 0.3
CONFIRMATION_THRESHOLD = 0.7

NAME_WEIGHT = 0.5
TYPE_WEIGHT = 0.35
ATTRS_WEIGHT = 0.15

Tracer = Callable[[str], None]


@dataclasses.dataclass(frozen=True)
class RenameCandidate:
    old: str
    new: str
    score: float


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def name_similarity(first: str, second: str) -> float:
    a = first.lower()
    b = second.lower()
    if a == b:
        return 1.0
    # ext_billing_id -> billing_id, user_name -> username
    if a.startswith(b) or b.startswith(a) or a.endswith(b) or b.endswith(a):
        return 0.9
    if a.replace("_", "") == b.replace("_", ""):
        return 0.9

    ratio = 1 - levenshtein(a, b) / max(len(a), len(b))
    words_a = a.split("_")
    words_b = b.split("_")
    if len(words_a) > 1 and len(words_b) > 1:
        shared = sum(1 for word in words_a if word in words_b)
        return max(ratio, shared / max(len(words_a), len(words_b)))
    return ratio


def column_similarity(old: ColumnDefinition, new: ColumnDefinition) -> float:
    type_score = 1.0 if old.data_type == new.data_type else 0.5
    attrs = (
        old.nullable == new.nullable,
        old.primary_key == new.primary_key,
        old.unique == new.unique,
        old.default == new.default,
    )
    attrs_score = sum(attrs) / len(attrs)
    return NAME_WEIGHT * name_similarity(old.name, new.name) + TYPE_WEIGHT * type_score + ATTRS_WEIGHT * attrs_score


def detect_renames(old: TableDefinition, new: TableDefinition) -> list[RenameCandidate]:
    """Greedily pair removed columns with added ones, best score first."""
    new_names = {col.name for col in new.columns}
    old_names = {col.name for col in old.columns}
    removed = [col for col in old.columns if col.name not in new_names]
    added = [col for col in new.columns if col.name not in old_names]
    if not removed or not added:
        return []

    scored: list[tuple[float, int, int]] = []
    for old_idx, old_col in enumerate(removed):
        for new_idx, new_col in enumerate(added):
            scored.append((column_similarity(old_col, new_col), old_idx, new_idx))
    scored.sort(key=lambda item: (-item[0], item[1], item[2]))

    taken_old: set[int] = set()
    taken_new: set[int] = set()
    renames: list[RenameCandidate] = []
    for score, old_idx, new_idx in scored:
        if score < RENAME_THRESHOLD:
            break
        if old_idx in taken_old or new_idx in taken_new:
            continue
        taken_old.add(old_idx)
        taken_new.add(new_idx)
        renames.append(RenameCandidate(removed[old_idx].name, added[new_idx].name, round(score, 4)))
    return renames


def table_ref(table: TableDefinition) -> str:
    if table.schema == "public":
        return quote_ident(table.name)
    return table.sql_name


def render_references(fk: ForeignKey) -> str:
    out = f"REFERENCES {fk.table}"
    if fk.column:
        out += f"({quote_ident(fk.column)})"
    if fk.on_delete:
        out += f" ON DELETE {fk.on_delete}"
    if fk.on_update:
        out += f" ON UPDATE {fk.on_update}"
    return out


def render_column(col: ColumnDefinition, inline_primary_key: bool = True) -> str:
    """Column definition text as used by ``ADD COLUMN``.

    With ``inline_primary_key`` off the key is left out, for tables whose key
    is added as a separate constraint.
    """
    parts = [quote_ident(col.name), col.data_type]
    if not col.nullable:
        parts.append("NOT NULL")
    if col.default is not None:
        parts.append(f"DEFAULT {col.default}")
    if col.primary_key and inline_primary_key:
        parts.append("PRIMARY KEY")
    if col.unique and not col.primary_key:
        parts.append("UNIQUE")
    if col.foreign_key is not None:
        parts.append(render_references(col.foreign_key))
    if col.check is not None:
        parts.append(f"CHECK ({col.check})")
    return " ".join(parts)


def _constraint(table: str, column: str | None, suffix: str) -> str:
    if column is None:
        return quote_ident(f"{table}_{suffix}")
    return quote_ident(f"{table}_{column}_{suffix}")


def modify_column_statements(
    old_table: TableDefinition,
    new_table: TableDefinition,
    old: ColumnDefinition,
    new: ColumnDefinition,
) -> list[str]:
    """One ALTER TABLE per changed attribute of ``old`` -> ``new``.

    ``new.name`` is the column's current name. Constraints being dropped are
    named after the old table and column, since renames keep constraint names.
    Drops come first and adds last, so that type, nullability and default
    changes never run against a constraint that is about to go away. The
    primary key is left to ``primary_key_operations``.
    """
    alter = f"ALTER TABLE {table_ref(new_table)}"
    col = quote_ident(new.name)
    drops: list[str] = []
    changes: list[str] = []
    adds: list[str] = []

    old_unique = old.unique and not old.primary_key
    new_unique = new.unique and not new.primary_key
    if old_unique != new_unique:
        if old_unique:
            drops.append(f"{alter} DROP CONSTRAINT IF EXISTS {_constraint(old_table.name, old.name, 'key')};")
        if new_unique:
            adds.append(f"{alter} ADD CONSTRAINT {_constraint(new_table.name, new.name, 'key')} UNIQUE ({col});")

    if old.foreign_key != new.foreign_key:
        if old.foreign_key is not None:
            drops.append(f"{alter} DROP CONSTRAINT IF EXISTS {_constraint(old_table.name, old.name, 'fkey')};")
        if new.foreign_key is not None:
            adds.append(
                f"{alter} ADD CONSTRAINT {_constraint(new_table.name, new.name, 'fkey')} "
                f"FOREIGN KEY ({col}) {render_references(new.foreign_key)};"
            )

    if old.check != new.check:
        if old.check is not None:
            drops.append(f"{alter} DROP CONSTRAINT IF EXISTS {_constraint(old_table.name, old.name, 'check')};")
        if new.check is not None:
            adds.append(f"{alter} ADD CONSTRAINT {_constraint(new_table.name, new.name, 'check')} CHECK ({new.check});")

    if old.data_type != new.data_type:
        changes.append(f"{alter} ALTER COLUMN {col} TYPE {new.data_type} USING {col}::{new.data_type};")

    if old.nullable != new.nullable:
        action = "DROP NOT NULL" if new.nullable else "SET NOT NULL"
        changes.append(f"{alter} ALTER COLUMN {col} {action};")

    if old.default != new.default:
        if new.default is None:
            changes.append(f"{alter} ALTER COLUMN {col} DROP DEFAULT;")
        else:
            changes.append(f"{alter} ALTER COLUMN {col} SET DEFAULT {new.default};")

    return drops + changes + adds


def primary_key_columns(table: TableDefinition) -> tuple[str, ...]:
    return tuple(col.name for col in table.columns if col.primary_key)


def primary_key_operations(
    old: TableDefinition,
    new: TableDefinition,
    renamed: dict[str, str],
) -> tuple[AlterOperation | None, AlterOperation | None]:
    """(drop, add) operations when the key's column set changes, else (None, None).

    ``renamed`` maps old column names to new ones, so a renamed key column
    does not count as a key change.
    """
    old_key = primary_key_columns(old)
    new_key = primary_key_columns(new)
    if {renamed.get(name, name) for name in old_key} == set(new_key):
        return None, None

    alter = f"ALTER TABLE {table_ref(new)}"
    target = new.qualified_name
    drop = add = None
    if old_key:
        drop = AlterOperation(
            kind=AlterKind.DROP_PRIMARY_KEY,
            table=target,
            column=", ".join(old_key),
            statements=(f"{alter} DROP CONSTRAINT IF EXISTS {_constraint(old.name, None, 'pkey')};",),
        )
    if new_key:
        columns = ", ".join(quote_ident(name) for name in new_key)
        add = AlterOperation(
            kind=AlterKind.ADD_PRIMARY_KEY,
            table=target,
            column=", ".join(new_key),
            statements=(f"{alter} ADD CONSTRAINT {_constraint(new.name, None, 'pkey')} PRIMARY KEY ({columns});",),
        )
    return drop, add


def _rename_table_statements(old: TableDefinition, new: TableDefinition) -> list[str]:
    out: list[str] = []
    current = old
    if old.schema != new.schema:
        out.append(f"ALTER TABLE {table_ref(current)} SET SCHEMA {quote_ident(new.schema)};")
        current = dataclasses.replace(current, schema=new.schema)
    if old.name != new.name:
        out.append(f"ALTER TABLE {table_ref(current)} RENAME TO {quote_ident(new.name)};")
    return out


def diff_tables(
    old: TableDefinition,
    new: TableDefinition,
    trace: Tracer | None = None,
) -> tuple[AlterOperation, ...]:
    """Operations that turn table ``old`` into table ``new``.

    Order: table rename, primary key drop, column renames (each followed by
    its MODIFY when the definition changed too), additions and modifications
    in the new table's column order, primary key add, then drops in the old
    table's column order.
    """
    target = new.qualified_name
    alter = f"ALTER TABLE {table_ref(new)}"
    ops: list[AlterOperation] = []

    if old.qualified_name != target:
        ops.append(
            AlterOperation(
                kind=AlterKind.RENAME_TABLE,
                table=target,
                column="",
                statements=tuple(_rename_table_statements(old, new)),
                new_column=None,
            )
        )

    renames = detect_renames(old, new)
    renamed_old = {r.old for r in renames}
    renamed_new = {r.new for r in renames}
    drop_key, add_key = primary_key_operations(old, new, {r.old: r.new for r in renames})
    if drop_key is not None:
        ops.append(drop_key)

    for rename in renames:
        old_col = old.column(rename.old)
        new_col = new.column(rename.new)
        if trace:
            trace(f"{target}: {rename.old} -> {rename.new} looks like a rename (score {rename.score:.2f})")
        ops.append(
            AlterOperation(
                kind=AlterKind.RENAME_COLUMN,
                table=target,
                column=rename.old,
                new_column=rename.new,
                statements=(f"{alter} RENAME COLUMN {quote_ident(rename.old)} TO {quote_ident(rename.new)};",),
                confidence=rename.score,
                requires_confirmation=rename.score < CONFIRMATION_THRESHOLD,
            )
        )
        statements = modify_column_statements(old, new, old_col, new_col)
        if statements:
            ops.append(
                AlterOperation(kind=AlterKind.MODIFY_COLUMN, table=target, column=rename.new, statements=tuple(statements))
            )

    for new_col in new.columns:
        if new_col.name in renamed_new:
            continue
        old_col = old.column(new_col.name)
        if old_col is None:
            ops.append(
                AlterOperation(
                    kind=AlterKind.ADD_COLUMN,
                    table=target,
                    column=new_col.name,
                    statements=(f"{alter} ADD COLUMN {render_column(new_col, inline_primary_key=False)};",),
                )
            )
        elif old_col != new_col:
            statements = modify_column_statements(old, new, old_col, new_col)
            if statements:
                ops.append(
                    AlterOperation(
                        kind=AlterKind.MODIFY_COLUMN,
                        table=target,
                        column=new_col.name,
                        statements=tuple(statements),
                    )
                )

    if add_key is not None:
        ops.append(add_key)

    for old_col in old.columns:
        if old_col.name in renamed_old or new.column(old_col.name) is not None:
            continue
        ops.append(
            AlterOperation(
                kind=AlterKind.DROP_COLUMN,
                table=target,
                column=old_col.name,
                statements=(f"{alter} DROP COLUMN {quote_ident(old_col.name)};",),
            )
        )

    if trace:
        trace(f"{target}: {len(ops)} operation(s)")
    return tuple(ops)
