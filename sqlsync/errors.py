"""Error types raised by the sqlsync pipeline."""

from __future__ import annotations


class SqlSyncError(ValueError):
    """Base class for every error sqlsync reports about its input."""


class DirectiveConflict(SqlSyncError):
    pass


class MultiStatementTableFile(SqlSyncError):
    pass


class TableParseFailure(SqlSyncError):
    pass


class StatementSyntaxError(SqlSyncError):
    pass


class ConfigError(SqlSyncError):
    pass


class StateFileError(SqlSyncError):
    pass


class UnresolvedFileErrors(SqlSyncError):
    """Raised when diffing is attempted while some files still fail to process."""

    def __init__(self, errors: dict[str, SqlSyncError]):
        self.errors = dict(errors)
        lines = [f"{len(self.errors)} file(s) failed to process:"]
        for path in sorted(self.errors):
            lines.append(f"  {path}: {self.errors[path]}")
        super().__init__("\n".join(lines))
