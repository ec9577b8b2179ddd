"""Persistence layer for the mapping store."""

from tracksync.infrastructure.persistence.change_feed import InProcessChangeFeed
from tracksync.infrastructure.persistence.credentials import (
    SettingsCredentialStore,
    StaticCredentialStore,
)
from tracksync.infrastructure.persistence.database import Database
from tracksync.infrastructure.persistence.repositories import SqlAlchemyMappingStore

__all__ = [
    "Database",
    "InProcessChangeFeed",
    "SettingsCredentialStore",
    "SqlAlchemyMappingStore",
    "StaticCredentialStore",
]
