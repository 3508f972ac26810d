"""
Revision history of one line and revision alias resolution.

A line is a stream (main line or patch) or a workspace. Its history is the
chain of revisions ending at the line's head; BASE is the revision the line
was created from.

Alias resolution:
    None, "HEAD", "LATEST", "CURRENT"   -> current head revision
    "BASE"                              -> base revision
    anything else                       -> literal revision id, checked lazily

Invariants:
    - Resolution never moves any pointer
    - A literal id that is not on this line is NotFound, even if it exists
      elsewhere in the project
    - An empty listing is a valid result; store failures propagate
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from ..errors import NotFoundError
from ..model.types import (
    Revision,
    RevisionAlias,
    SourceSpecification,
    WorkspaceSpecification,
)
from ..store.base import RevisionPredicate, RevisionSequence, VersionedStore
from ..store.entity_store import EntitySnapshot
from ..streams import source_pointer

logger = logging.getLogger(__name__)

RevisionRef = Union[RevisionAlias, str, None]

_HEAD_NAMES = {"HEAD", "LATEST", "CURRENT"}


def parse_revision_alias(ref: RevisionRef) -> tuple[RevisionAlias, Optional[str]]:
    """Classify a revision reference.

    Returns:
        ``(alias, literal_id)`` where ``literal_id`` is only set for
        ``RevisionAlias.REVISION_ID``
    """
    if ref is None:
        return RevisionAlias.HEAD, None
    if isinstance(ref, RevisionAlias):
        if ref is RevisionAlias.REVISION_ID:
            raise TypeError("REVISION_ID alias needs a literal revision id")
        return ref, None
    upper = ref.strip().upper()
    if upper in _HEAD_NAMES:
        return RevisionAlias.HEAD, None
    if upper == "BASE":
        return RevisionAlias.BASE, None
    return RevisionAlias.REVISION_ID, ref


def describe_source(source: SourceSpecification) -> str:
    if isinstance(source, WorkspaceSpecification):
        return str(source)
    return f"{source} stream"


class RevisionHistory:
    """Read access to the revisions of one stream or workspace.

    Example:
        >>> history = RevisionHistory(store, "p1", user_workspace("alice"))
        >>> history.resolve("BASE").id
        'c0ffee...'
        >>> [r.message for r in history.get_revisions(limit=2)]
        ['add B', 'add A']
    """

    def __init__(
        self,
        store: VersionedStore,
        project_id: str,
        source: SourceSpecification,
        default_limit: Optional[int] = None,
    ) -> None:
        self._store = store
        self.project_id = project_id
        self.source = source
        self.pointer = source_pointer(source)
        self.default_limit = default_limit
        self._context = store.get_revision_access_context(project_id, self.pointer)

    def exists(self) -> bool:
        return self._store.get_pointer(self.project_id, self.pointer) is not None

    def _require_exists(self) -> None:
        if not self.exists():
            raise NotFoundError(
                f"Unknown {describe_source(self.source)} in project {self.project_id}",
                resource_type="workspace" if isinstance(self.source, WorkspaceSpecification) else "stream",
                resource_id=self.pointer,
            )

    def get_base_revision(self) -> Revision:
        self._require_exists()
        return self._context.get_base_revision()

    def get_current_revision(self) -> Revision:
        self._require_exists()
        return self._context.get_current_revision()

    def get_revision(self, revision_id: str) -> Revision:
        self._require_exists()
        return self._context.get_revision(revision_id)

    def get_revisions(
        self,
        predicate: Optional[RevisionPredicate] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> RevisionSequence:
        """Reverse-chronological revisions of this line.

        The result is lazy and restartable; iterating it again re-reads the
        line from its current head.
        """
        self._require_exists()
        return self._context.get_revisions(
            predicate, since, until, limit if limit is not None else self.default_limit
        )

    def resolve(self, ref: RevisionRef = None) -> Revision:
        """Resolve BASE, HEAD or a literal revision id against this line."""
        alias, literal = parse_revision_alias(ref)
        if alias is RevisionAlias.BASE:
            return self.get_base_revision()
        if alias is RevisionAlias.HEAD:
            return self.get_current_revision()
        return self.get_revision(literal)

    def resolve_id(self, ref: RevisionRef = None) -> str:
        return self.resolve(ref).id

    def read_entities(self, ref: RevisionRef = None) -> EntitySnapshot:
        """Entity snapshot at a revision of this line."""
        return self._store.read_entities(self.project_id, self.resolve_id(ref))

    def read_project_configuration(self, ref: RevisionRef = None) -> dict:
        return self._store.read_project_configuration(self.project_id, self.resolve_id(ref))
