"""Storage collaborator — interface plus an in-memory implementation."""

from src.store.base import FleetStore
from src.store.exceptions import (
    AlertNotFoundError,
    ServerNotFoundError,
    SiteNotFoundError,
    StoreError,
)
from src.store.memory import MemoryStore

__all__ = [
    "AlertNotFoundError",
    "FleetStore",
    "MemoryStore",
    "ServerNotFoundError",
    "SiteNotFoundError",
    "StoreError",
]
