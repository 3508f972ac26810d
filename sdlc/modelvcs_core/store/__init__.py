"""
Storage abstraction for the version-control core.

This module provides a pluggable store interface supporting:
- In-memory (tests, local experiments)
- SQLite (local filesystem persistence)

Stores keep revisions, named pointers, tags and reviews. Workspace and
stream semantics live above them, expressed purely as pointer names.

Invariants:
    - commit() is compare-and-swap on the pointer head
    - Pointer create/rename/delete are atomic
    - Unsupported mutations fail with UnavailableError, never silently

How to change safely:
    - New backends must implement the VersionedStore protocol
    - Run the shared store tests against every backend
"""

from .base import (
    BaseStore,
    Pointer,
    PointerRevisionAccessContext,
    RevisionAccessContext,
    RevisionSequence,
    Tag,
    VersionedStore,
    create_store,
)
from .entity_store import (
    EntityChangeBatch,
    EntityScan,
    EntitySnapshot,
    validate_entity_change,
    validate_entity_changes,
)
from .memory import InMemoryStore
from .sqlite import SqliteStore

__all__ = [
    # Protocol and types
    "VersionedStore",
    "RevisionAccessContext",
    "RevisionSequence",
    "PointerRevisionAccessContext",
    "BaseStore",
    "Pointer",
    "Tag",
    # Entities
    "EntitySnapshot",
    "EntityScan",
    "EntityChangeBatch",
    "validate_entity_change",
    "validate_entity_changes",
    # Factory
    "create_store",
    # Implementations
    "InMemoryStore",
    "SqliteStore",
]
