"""Vault storage backends.

Storage handles are constructed explicitly and passed to every vault
operation; there is no module-level connection.
"""
from .base import ALL_FOLDERS, Row, VaultStorage
from .memory import MemoryStorage
from .postgres import SCHEMA_SQL, PostgresStorage

__all__ = [
    "ALL_FOLDERS",
    "Row",
    "VaultStorage",
    "MemoryStorage",
    "PostgresStorage",
    "SCHEMA_SQL",
]
