"""
In-memory store implementation.

This module provides a fully functional VersionedStore that keeps every
project in process memory, for:
- Unit tests
- Integration tests
- Local experiments without a data directory

Invariants:
    - All data is lost on close() or process exit
    - Each instance is independent; there is no module-level state
    - Thread-safe: one re-entrant lock guards every read and write

How to change safely:
    - Keep behaviour identical to SqliteStore; both run the same tests
    - Add testing helpers at the bottom, never in the protocol methods
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from ..errors import ConflictError, NotFoundError, SdlcError
from ..model.types import EntityChange, Project, Review, Revision, utc_now
from .base import BaseStore, Pointer, Tag, new_revision_id
from .entity_store import EMPTY_SNAPSHOT, EntityChangeBatch, EntitySnapshot

logger = logging.getLogger(__name__)


@dataclass
class InMemoryProject:
    """Everything stored for one project."""

    project: Project
    revisions: dict[str, Revision] = field(default_factory=dict)
    snapshots: dict[str, EntitySnapshot] = field(default_factory=dict)
    configurations: dict[str, dict[str, Any]] = field(default_factory=dict)
    pointers: dict[str, Pointer] = field(default_factory=dict)
    tags: dict[str, Tag] = field(default_factory=dict)
    reviews: dict[str, Review] = field(default_factory=dict)
    next_review_id: int = 1


class InMemoryStore(BaseStore):
    """In-memory implementation of VersionedStore.

    Example:
        >>> store = InMemoryStore()
        >>> store.initialize()
        >>> r0 = store.create_project(Project("demo", "Demo"), "stream/main", "admin")
        >>> store.get_pointer("demo", "stream/main").revision_id == r0.id
        True
    """

    backend_name = "in-memory"

    def __init__(self) -> None:
        super().__init__()
        self._projects: dict[str, InMemoryProject] = {}
        self._lock = threading.RLock()
        self._pending_failure: Optional[Exception] = None

    def initialize(self) -> None:
        self._initialized = True
        logger.debug("InMemoryStore initialized")

    def close(self) -> None:
        """Close and clear all data."""
        with self._lock:
            self._initialized = False
            self._projects.clear()
        logger.debug("InMemoryStore closed")

    def _project(self, project_id: str) -> InMemoryProject:
        self._check_initialized()
        data = self._projects.get(project_id)
        if data is None:
            raise NotFoundError(
                f"Unknown project: {project_id}", resource_type="project", resource_id=project_id
            )
        return data

    def _before_write(self) -> None:
        self._check_initialized()
        if self._pending_failure is not None:
            failure, self._pending_failure = self._pending_failure, None
            raise failure

    # Projects

    def create_project(self, project: Project, root_pointer: str, author: str,
                       message: str = "Initial commit") -> Revision:
        with self._lock:
            self._before_write()
            if project.project_id in self._projects:
                raise ConflictError(f"Project {project.project_id} already exists")
            now = utc_now()
            revision = Revision(new_revision_id(), author, now, author, now, message)
            data = InMemoryProject(project=project)
            data.revisions[revision.id] = revision
            data.snapshots[revision.id] = EntitySnapshot({}, revision.id)
            data.configurations[revision.id] = {}
            data.pointers[root_pointer] = Pointer(root_pointer, revision.id, revision.id)
            self._projects[project.project_id] = data
            return revision

    def get_project(self, project_id: str) -> Project:
        with self._lock:
            return self._project(project_id).project

    def list_projects(self) -> list[Project]:
        with self._lock:
            self._check_initialized()
            return [self._projects[k].project for k in sorted(self._projects)]

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            self._before_write()
            self._projects.pop(project_id, None)

    # Revisions and entities

    def get_revision(self, project_id: str, revision_id: str) -> Revision:
        with self._lock:
            revision = self._project(project_id).revisions.get(revision_id)
            if revision is None:
                raise NotFoundError(
                    f"Unknown revision {revision_id} in project {project_id}",
                    resource_type="revision",
                    resource_id=revision_id,
                )
            return revision

    def read_entities(self, project_id: str, revision_id: str) -> EntitySnapshot:
        with self._lock:
            snapshot = self._project(project_id).snapshots.get(revision_id)
            if snapshot is None:
                raise NotFoundError(
                    f"Unknown revision {revision_id} in project {project_id}",
                    resource_type="revision",
                    resource_id=revision_id,
                )
            # Hand out copies so callers cannot reach stored content.
            return EntitySnapshot(
                {p: replace(e, content=copy.deepcopy(e.content)) for p, e in snapshot.as_mapping().items()},
                revision_id,
            )

    def read_project_configuration(self, project_id: str, revision_id: str) -> dict[str, Any]:
        with self._lock:
            data = self._project(project_id)
            if revision_id not in data.configurations:
                raise NotFoundError(
                    f"Unknown revision {revision_id} in project {project_id}",
                    resource_type="revision",
                    resource_id=revision_id,
                )
            return copy.deepcopy(data.configurations[revision_id])

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
        with self._lock:
            self._before_write()
            data = self._project(project_id)
            current = data.pointers.get(pointer)
            if current is None:
                raise NotFoundError(
                    f"Unknown line {pointer!r} in project {project_id}",
                    resource_type="pointer",
                    resource_id=pointer,
                )
            if current.revision_id != base_revision_id:
                raise ConflictError(
                    f"Cannot commit to {pointer!r}: expected head {base_revision_id}, "
                    f"found {current.revision_id}",
                    details={"project_id": project_id, "pointer": pointer},
                )
            batch = EntityChangeBatch(data.snapshots.get(base_revision_id, EMPTY_SNAPSHOT))
            batch.apply(changes)
            now = utc_now()
            revision = Revision(
                new_revision_id(), author, now, author, now, message, parent_id=base_revision_id
            )
            data.snapshots[revision.id] = batch.seal(revision.id)
            data.configurations[revision.id] = copy.deepcopy(
                project_configuration
                if project_configuration is not None
                else data.configurations.get(base_revision_id, {})
            )
            data.revisions[revision.id] = revision
            data.pointers[pointer] = replace(current, revision_id=revision.id)
            logger.debug(
                "Revision committed",
                extra={"project_id": project_id, "pointer": pointer, "revision_id": revision.id},
            )
            return revision

    # Pointers

    def create_pointer(self, project_id: str, name: str, revision_id: str,
                       base_revision_id: Optional[str] = None) -> Pointer:
        with self._lock:
            self._before_write()
            data = self._project(project_id)
            if name in data.pointers:
                raise ConflictError(f"Pointer {name!r} already exists in project {project_id}")
            for required in (revision_id, base_revision_id or revision_id):
                if required not in data.revisions:
                    raise NotFoundError(
                        f"Unknown revision {required} in project {project_id}",
                        resource_type="revision",
                        resource_id=required,
                    )
            pointer = Pointer(name, revision_id, base_revision_id or revision_id)
            data.pointers[name] = pointer
            return pointer

    def get_pointer(self, project_id: str, name: str) -> Optional[Pointer]:
        with self._lock:
            return self._project(project_id).pointers.get(name)

    def list_pointers(self, project_id: str, prefix: str = "") -> list[Pointer]:
        with self._lock:
            pointers = self._project(project_id).pointers
            return [pointers[n] for n in sorted(pointers) if n.startswith(prefix)]

    def delete_pointer(self, project_id: str, name: str) -> bool:
        with self._lock:
            self._before_write()
            return self._project(project_id).pointers.pop(name, None) is not None

    def rename_pointer(self, project_id: str, old_name: str, new_name: str,
                       replace: bool = False) -> Pointer:
        with self._lock:
            self._before_write()
            pointers = self._project(project_id).pointers
            pointer = pointers.get(old_name)
            if pointer is None:
                raise NotFoundError(
                    f"Cannot rename pointer {old_name!r}: not found",
                    resource_type="pointer",
                    resource_id=old_name,
                )
            if new_name in pointers and not replace:
                raise ConflictError(f"Cannot rename pointer {old_name!r}: {new_name!r} already exists")
            del pointers[old_name]
            renamed = Pointer(new_name, pointer.revision_id, pointer.base_revision_id, pointer.created_at)
            pointers[new_name] = renamed
            return renamed

    # Tags

    def create_tag(self, project_id: str, name: str, revision_id: str, message: str = "") -> Tag:
        with self._lock:
            self._before_write()
            data = self._project(project_id)
            if name in data.tags:
                raise ConflictError(f"Tag {name!r} already exists in project {project_id}")
            if revision_id not in data.revisions:
                raise NotFoundError(
                    f"Unknown revision {revision_id} in project {project_id}",
                    resource_type="revision",
                    resource_id=revision_id,
                )
            tag = Tag(name, revision_id, message)
            data.tags[name] = tag
            return tag

    def list_tags(self, project_id: str, prefix: str = "") -> list[Tag]:
        with self._lock:
            tags = self._project(project_id).tags
            return [tags[n] for n in sorted(tags) if n.startswith(prefix)]

    # Reviews

    def create_review(self, review: Review) -> Review:
        with self._lock:
            self._before_write()
            data = self._project(review.project_id)
            stored = replace(review, id=str(data.next_review_id))
            data.next_review_id += 1
            data.reviews[stored.id] = stored
            return stored

    def update_review(self, review: Review) -> Review:
        with self._lock:
            self._before_write()
            data = self._project(review.project_id)
            if review.id not in data.reviews:
                raise NotFoundError(
                    f"Unknown review {review.id} in project {review.project_id}",
                    resource_type="review",
                    resource_id=review.id,
                )
            data.reviews[review.id] = review
            return review

    def get_review(self, project_id: str, review_id: str) -> Review:
        with self._lock:
            review = self._project(project_id).reviews.get(review_id)
            if review is None:
                raise NotFoundError(
                    f"Unknown review {review_id} in project {project_id}",
                    resource_type="review",
                    resource_id=review_id,
                )
            return review

    def list_reviews(self, project_id: str) -> list[Review]:
        with self._lock:
            reviews = self._project(project_id).reviews
            return sorted(reviews.values(), key=lambda r: int(r.id))

    # Testing helpers

    def inject_failure(self, exception: SdlcError) -> None:
        """Make the next mutating call raise ``exception`` (testing helper)."""
        with self._lock:
            self._pending_failure = exception

    def revision_count(self, project_id: str) -> int:
        """Number of stored revisions in a project (testing helper)."""
        with self._lock:
            return len(self._project(project_id).revisions)
