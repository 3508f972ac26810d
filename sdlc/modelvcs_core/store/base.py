"""
Storage SPI for the version-control core.

This module defines the VersionedStore protocol every backend implements,
the records it exchanges (Pointer, Tag), the revision access context used
to walk one history line, and the store factory.

A store knows nothing about workspaces or streams. It keeps, per project:
- revisions with their entity snapshot, linked by parent id
- named pointers (a head revision plus the base it was created from)
- write-once tags
- review records

Invariants:
    - commit() is compare-and-swap on the pointer head: it fails with
      ConflictError unless the head still equals base_revision_id
    - create/rename/delete of pointers are atomic; a pointer is never
      observable half-moved
    - Mutating calls that a backend cannot perform raise UnavailableError
    - I/O faults surface as StorageFailureError, never as empty results

How to change safely:
    - Protocol changes require updating every implementation
    - Keep line-walking logic in BaseStore so backends only provide
      primitives
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterable,
    Iterator,
    Optional,
    Protocol,
    runtime_checkable,
)

from ..errors import InvalidArgumentError, NotFoundError, UnavailableError
from ..model.merge import MergeResult, merge_configuration, three_way_merge
from ..model.types import EntityChange, Project, Review, Revision, utc_now
from .entity_store import EntitySnapshot

if TYPE_CHECKING:
    from ..config import SdlcSettings

logger = logging.getLogger(__name__)

RevisionPredicate = Callable[[Revision], bool]


def new_revision_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Pointer:
    """A named, movable reference to a revision.

    Attributes:
        name: Pointer name (see streams.py for the naming scheme)
        revision_id: Current head revision
        base_revision_id: Revision the pointer was created from
        created_at: Creation time of the pointer
    """

    name: str
    revision_id: str
    base_revision_id: str
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Tag:
    """A write-once named reference to a revision."""

    name: str
    revision_id: str
    message: str = ""
    created_at: datetime = field(default_factory=utc_now)


@runtime_checkable
class RevisionAccessContext(Protocol):
    """Read access to the revisions of one history line."""

    def get_base_revision(self) -> Revision:
        ...

    def get_current_revision(self) -> Revision:
        ...

    def get_revision(self, revision_id: str) -> Revision:
        ...

    def get_revisions(
        self,
        predicate: Optional[RevisionPredicate] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> Iterable[Revision]:
        ...


@runtime_checkable
class VersionedStore(Protocol):
    """Protocol for storage backends.

    Atomicity contract:
        - commit() appends one revision and moves the pointer in one step
        - rename_pointer(replace=True) swaps the target in one step
        - create_tag() and create_pointer() fail with ConflictError if the
          name is taken

    Example:
        >>> store = InMemoryStore()
        >>> store.initialize()
        >>> r0 = store.create_project(Project("p", "Demo"), "stream/main", "admin")
        >>> store.commit("p", "stream/main", r0.id, changes, "alice", "add A")
    """

    @property
    def is_initialized(self) -> bool:
        ...

    def initialize(self) -> None:
        ...

    def close(self) -> None:
        ...

    # Projects

    def create_project(self, project: Project, root_pointer: str, author: str,
                       message: str = "Initial commit") -> Revision:
        """Create a project with one empty root revision and its root pointer."""
        ...

    def get_project(self, project_id: str) -> Project:
        ...

    def list_projects(self) -> list[Project]:
        ...

    def delete_project(self, project_id: str) -> None:
        ...

    # Revisions and entities

    def get_revision(self, project_id: str, revision_id: str) -> Revision:
        """Look up a revision anywhere in the project (NotFoundError if unknown)."""
        ...

    def read_entities(self, project_id: str, revision_id: str) -> EntitySnapshot:
        ...

    def read_project_configuration(self, project_id: str, revision_id: str) -> dict[str, Any]:
        ...

    def commit(
        self,
        project_id: str,
        pointer: str,
        base_revision_id: str,
        changes: list[EntityChange],
        author: str,
        message: str,
        project_configuration: Optional[dict[str, Any]] = None,
    ) -> Revision:
        """Commit changes on top of ``base_revision_id`` and advance ``pointer``."""
        ...

    def get_revision_access_context(self, project_id: str, pointer: str) -> RevisionAccessContext:
        ...

    # Pointers

    def create_pointer(self, project_id: str, name: str, revision_id: str,
                       base_revision_id: Optional[str] = None) -> Pointer:
        ...

    def get_pointer(self, project_id: str, name: str) -> Optional[Pointer]:
        ...

    def list_pointers(self, project_id: str, prefix: str = "") -> list[Pointer]:
        ...

    def delete_pointer(self, project_id: str, name: str) -> bool:
        ...

    def rename_pointer(self, project_id: str, old_name: str, new_name: str,
                       replace: bool = False) -> Pointer:
        ...

    # Tags

    def create_tag(self, project_id: str, name: str, revision_id: str, message: str = "") -> Tag:
        ...

    def list_tags(self, project_id: str, prefix: str = "") -> list[Tag]:
        ...

    # Reviews

    def create_review(self, review: Review) -> Review:
        """Persist a new review; the store assigns ``review.id``."""
        ...

    def update_review(self, review: Review) -> Review:
        ...

    def get_review(self, project_id: str, review_id: str) -> Review:
        ...

    def list_reviews(self, project_id: str) -> list[Review]:
        ...

    # Merge

    def three_way_merge(self, project_id: str, base_revision_id: str,
                        local_revision_id: str, upstream_revision_id: str) -> MergeResult:
        ...


class RevisionSequence:
    """Reverse-chronological revisions of one line, filtered lazily.

    Iterating twice walks the line twice; the head is re-read on each pass.
    """

    def __init__(
        self,
        walk: Callable[[], Iterator[Revision]],
        predicate: Optional[RevisionPredicate],
        since: Optional[datetime],
        until: Optional[datetime],
        limit: Optional[int],
    ) -> None:
        if limit is not None and limit < 0:
            raise InvalidArgumentError(f"Invalid revision limit: {limit}")
        if since is not None and until is not None and since > until:
            raise InvalidArgumentError(f"Invalid time range: since {since} is after until {until}")
        self._walk = walk
        self._predicate = predicate
        self._since = since
        self._until = until
        self._limit = limit

    def __iter__(self) -> Iterator[Revision]:
        if self._limit == 0:
            return
        count = 0
        for revision in self._walk():
            if self._until is not None and revision.committed_at > self._until:
                continue
            if self._since is not None and revision.committed_at < self._since:
                # Committed times only decrease further down the line.
                return
            if self._predicate is not None and not self._predicate(revision):
                continue
            yield revision
            count += 1
            if self._limit is not None and count >= self._limit:
                return


class PointerRevisionAccessContext:
    """RevisionAccessContext over the line that ends at a pointer's head."""

    def __init__(self, store: BaseStore, project_id: str, pointer: str) -> None:
        self._store = store
        self.project_id = project_id
        self.pointer = pointer

    def _get_pointer(self) -> Pointer:
        pointer = self._store.get_pointer(self.project_id, self.pointer)
        if pointer is None:
            raise NotFoundError(
                f"Unknown line {self.pointer!r} in project {self.project_id}",
                resource_type="pointer",
                resource_id=self.pointer,
            )
        return pointer

    def _walk(self) -> Iterator[Revision]:
        revision_id: Optional[str] = self._get_pointer().revision_id
        while revision_id is not None:
            revision = self._store.get_revision(self.project_id, revision_id)
            yield revision
            revision_id = revision.parent_id

    def get_base_revision(self) -> Revision:
        return self._store.get_revision(self.project_id, self._get_pointer().base_revision_id)

    def get_current_revision(self) -> Revision:
        return self._store.get_revision(self.project_id, self._get_pointer().revision_id)

    def get_revision(self, revision_id: str) -> Revision:
        for revision in self._walk():
            if revision.id == revision_id:
                return revision
        raise NotFoundError(
            f"Revision {revision_id} is not part of {self.pointer!r} in project {self.project_id}",
            resource_type="revision",
            resource_id=revision_id,
        )

    def get_revisions(
        self,
        predicate: Optional[RevisionPredicate] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> RevisionSequence:
        return RevisionSequence(self._walk, predicate, since, until, limit)


class BaseStore(ABC):
    """Shared behaviour for store implementations.

    Subclasses provide the storage primitives; line walking and merging
    are built on top of them here.
    """

    backend_name = "abstract"

    def __init__(self) -> None:
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise UnavailableError(
                f"{self.backend_name} store is not initialized", feature="lifecycle"
            )

    @abstractmethod
    def get_pointer(self, project_id: str, name: str) -> Optional[Pointer]:
        ...

    @abstractmethod
    def get_revision(self, project_id: str, revision_id: str) -> Revision:
        ...

    @abstractmethod
    def read_entities(self, project_id: str, revision_id: str) -> EntitySnapshot:
        ...

    def get_revision_access_context(self, project_id: str, pointer: str) -> PointerRevisionAccessContext:
        self._check_initialized()
        return PointerRevisionAccessContext(self, project_id, pointer)

    def three_way_merge(self, project_id: str, base_revision_id: str,
                        local_revision_id: str, upstream_revision_id: str) -> MergeResult:
        base = self.read_entities(project_id, base_revision_id)
        local = self.read_entities(project_id, local_revision_id)
        upstream = self.read_entities(project_id, upstream_revision_id)
        result = three_way_merge(base.as_mapping(), local.as_mapping(), upstream.as_mapping())
        result = replace(result, project_configuration=merge_configuration(
            self.read_project_configuration(project_id, base_revision_id),
            self.read_project_configuration(project_id, local_revision_id),
            self.read_project_configuration(project_id, upstream_revision_id),
        ))
        logger.debug(
            "Three-way merge computed",
            extra={
                "project_id": project_id,
                "base_revision_id": base_revision_id,
                "local_revision_id": local_revision_id,
                "upstream_revision_id": upstream_revision_id,
                "changes": len(result.changes),
                "conflicts": len(result.conflicts),
                "configuration_merged": result.project_configuration is not None,
            },
        )
        return result


def create_store(settings: "SdlcSettings") -> BaseStore:
    """Factory function to create a store from settings.

    Args:
        settings: Service settings

    Returns:
        Appropriate store implementation (not yet initialized)

    Raises:
        InvalidArgumentError: If the backend is not supported
    """
    from ..config import StorageBackend
    from .memory import InMemoryStore
    from .sqlite import SqliteStore

    if settings.storage_backend == StorageBackend.MEMORY:
        return InMemoryStore()
    elif settings.storage_backend == StorageBackend.SQLITE:
        return SqliteStore(
            settings.data_dir,
            wal_mode=settings.sqlite_wal_mode,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
    else:
        raise InvalidArgumentError(f"Unsupported storage backend: {settings.storage_backend}")
