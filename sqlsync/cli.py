"""Command-line entry point: ``sqlsync generate NAME`` and ``sqlsync status``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import DEFAULT_CONFIG_FILENAME, load_config
from .diff_engine import diff_state
from .errors import SqlSyncError
from .migration import build_snapshot, synthesize_migration
from .models import AlterKind, ChangeKind, DeclarativeRecord, FileChange, ProcessedFile
from .state_file import load_state, record_migration, save_state
from .traverser import process_sources

logger = logging.getLogger("sqlsync")

SYMBOLS = {ChangeKind.ADDED: "+", ChangeKind.MODIFIED: "~", ChangeKind.DELETED: "-"}


def describe_operation(op) -> str:
    if op.kind == AlterKind.RENAME_COLUMN:
        text = f"rename column {op.column} -> {op.new_column} (confidence {op.confidence:.2f})"
        if op.requires_confirmation:
            text += " [REVIEW]"
        return text
    if op.kind == AlterKind.RENAME_TABLE:
        return f"rename table -> {op.table}"
    return f"{op.kind.value.lower().replace('_', ' ')} {op.column}"


def format_changes(changes: list[FileChange]) -> list[str]:
    lines: list[str] = []
    for kind in (ChangeKind.ADDED, ChangeKind.MODIFIED, ChangeKind.DELETED):
        selected = [c for c in changes if c.kind == kind]
        if not selected:
            continue
        lines.append(f"{kind.value.capitalize()} files ({len(selected)}):")
        for change in selected:
            line = f"  {SYMBOLS[kind]} {change.path}"
            if kind == ChangeKind.DELETED and isinstance(change.previous, DeclarativeRecord):
                if change.previous.table is not None:
                    line += f"  [WARNING: drops table {change.previous.table.qualified_name}]"
            lines.append(line)
            for op in change.operations:
                lines.append(f"      {describe_operation(op)}")
    if not lines:
        lines.append("No changes detected.")
    return lines


def report_file_errors(files: list[ProcessedFile]) -> bool:
    failed = [f for f in files if f.error is not None]
    if not failed:
        return False
    print(f"SQL processing errors detected in {len(failed)} file(s):", file=sys.stderr)
    for idx, f in enumerate(failed, start=1):
        print(f"{idx}. {f.path}: {f.error}", file=sys.stderr)
    print("Fix the errors above before generating a migration.", file=sys.stderr)
    return True


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def run_status(args: argparse.Namespace) -> int:
    config = load_config(Path(args.config))
    state = load_state(config.state_file)
    files = process_sources(config, logger.debug)
    if report_file_errors(files):
        return 1
    changes = diff_state(files, state.snapshot, trace=logger.debug)
    for line in format_changes(changes):
        print(line)
    return 0


def run_generate(args: argparse.Namespace) -> int:
    config = load_config(Path(args.config))
    state = load_state(config.state_file)
    files = process_sources(config, logger.debug)
    if report_file_errors(files):
        return 1
    changes = diff_state(files, state.snapshot, trace=logger.debug)
    for line in format_changes(changes):
        print(line)

    migration = synthesize_migration(changes, args.name)
    if migration.is_empty:
        print("No executable changes. Migration not generated.")
        return 0
    if args.dry_run:
        print()
        print(migration.content, end="")
        return 0

    out_path = config.output_dir / migration.file_name
    write_text(out_path, migration.content)
    save_state(config.state_file, record_migration(state, migration, build_snapshot(files)))
    print(f"Generated {out_path}")
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sqlsync", description="Generate SQL migrations from declarative schema files")
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILENAME, help="Path to sqlsync.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug tracing to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    generate = sub.add_parser("generate", help="Write a migration for the detected changes")
    generate.add_argument("name", help="Migration name, used in the file name")
    generate.add_argument("--dry-run", action="store_true", help="Print the migration instead of writing it")
    generate.set_defaults(handler=run_generate)

    status = sub.add_parser("status", help="Show changes since the last migration")
    status.set_defaults(handler=run_status)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.handler(args)
    except SqlSyncError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
