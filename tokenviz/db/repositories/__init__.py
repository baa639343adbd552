"""Repository package for database access."""

from .usage import SqliteUsageRepository

__all__ = [
    "SqliteUsageRepository",
]
