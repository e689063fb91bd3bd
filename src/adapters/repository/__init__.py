"""Repository adapters - Database and in-memory implementations."""

from .memory import (
    InMemoryCredentialRepository,
    InMemoryDeveloperRepository,
    InMemoryIdentifierRepository,
)
from .postgres import (
    PostgresCredentialRepository,
    PostgresDeveloperRepository,
    PostgresIdentifierRepository,
    run_migrations,
)

__all__ = [
    "InMemoryCredentialRepository",
    "InMemoryDeveloperRepository",
    "InMemoryIdentifierRepository",
    "PostgresCredentialRepository",
    "PostgresDeveloperRepository",
    "PostgresIdentifierRepository",
    "run_migrations",
]
