"""Declarative schema-migration generator for PostgreSQL SQL files."""

from .diff_engine import diff_state
from .errors import SqlSyncError
from .file_processor import process_file, process_path
from .migration import build_snapshot, synthesize_migration
from .schema_differ import diff_tables
from .table_parser import parse_create_table
from .tokenizer import split_statements

__version__ = "0.1.0"

__all__ = [
    "SqlSyncError",
    "build_snapshot",
    "diff_state",
    "diff_tables",
    "parse_create_table",
    "process_file",
    "process_path",
    "split_statements",
    "synthesize_migration",
]
