"""Repository adapters - Database implementations."""

from .pools import DatabasePools
from .postgres import PostgresRegionalStore, PostgresUserDirectory, run_migrations

__all__ = ["DatabasePools", "PostgresRegionalStore", "PostgresUserDirectory", "run_migrations"]
