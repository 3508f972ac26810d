"""
Entity-set comparison between two revisions.

For every path present at either revision:
- absent at FROM, present at TO        -> ADDED
- present at FROM, absent at TO        -> DELETED
- present at both with different data  -> MODIFIED
- identical                            -> omitted

The project configuration is compared as a whole and reported only as a
boolean, never expanded into entity diffs.

Invariants:
    - compare(A, B) ADDED paths == compare(B, A) DELETED paths
    - MODIFIED paths are the same in both directions
    - Results are recomputed on every call and never stored

Example:
    >>> engine = ComparisonEngine(store)
    >>> comparison = engine.get_workspace_creation_comparison("p1", user_workspace("alice"))
    >>> [d.to_dict() for d in comparison.entity_diffs]
    [{'path': 'model::A', 'kind': 'ADDED'}]
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..history.revisions import RevisionHistory, RevisionRef
from ..model.types import (
    Comparison,
    EntityDiff,
    EntityDiffKind,
    SourceSpecification,
    WorkspaceSpecification,
)
from ..model.merge import EntityMap
from ..store.base import VersionedStore

logger = logging.getLogger(__name__)


def diff_entities(from_entities: EntityMap, to_entities: EntityMap) -> list[EntityDiff]:
    """Classify every path of two entity maps, sorted by path."""
    diffs = []
    for path in sorted(set(from_entities) | set(to_entities)):
        old = from_entities.get(path)
        new = to_entities.get(path)
        if old is None:
            diffs.append(EntityDiff(path, EntityDiffKind.ADDED))
        elif new is None:
            diffs.append(EntityDiff(path, EntityDiffKind.DELETED))
        elif not old.same_as(new):
            diffs.append(EntityDiff(path, EntityDiffKind.MODIFIED))
    return diffs


def configuration_changed(old: Mapping[str, Any], new: Mapping[str, Any]) -> bool:
    return dict(old) != dict(new)


class ComparisonEngine:
    """Computes comparisons between revision-addressable entity sets."""

    def __init__(self, store: VersionedStore) -> None:
        self._store = store

    def compare_revisions(self, project_id: str, from_revision_id: str, to_revision_id: str) -> Comparison:
        """Compare two revisions of the same project by id."""
        from_entities = self._store.read_entities(project_id, from_revision_id)
        to_entities = self._store.read_entities(project_id, to_revision_id)
        from_config = self._store.read_project_configuration(project_id, from_revision_id)
        to_config = self._store.read_project_configuration(project_id, to_revision_id)
        comparison = Comparison(
            from_revision_id=from_revision_id,
            to_revision_id=to_revision_id,
            entity_diffs=tuple(diff_entities(from_entities.as_mapping(), to_entities.as_mapping())),
            project_configuration_updated=configuration_changed(from_config, to_config),
        )
        logger.debug(
            "Comparison computed",
            extra={
                "project_id": project_id,
                "from_revision_id": from_revision_id,
                "to_revision_id": to_revision_id,
                "diffs": len(comparison.entity_diffs),
            },
        )
        return comparison

    def compare(
        self,
        project_id: str,
        source: SourceSpecification,
        from_ref: RevisionRef,
        to_ref: RevisionRef = None,
    ) -> Comparison:
        """Compare two revisions of one line; both refs are resolved on that line."""
        history = RevisionHistory(self._store, project_id, source)
        return self.compare_revisions(project_id, history.resolve_id(from_ref), history.resolve_id(to_ref))

    def get_workspace_creation_comparison(self, project_id: str, spec: WorkspaceSpecification) -> Comparison:
        """Workspace BASE -> workspace HEAD."""
        history = RevisionHistory(self._store, project_id, spec)
        return self.compare_revisions(
            project_id, history.get_base_revision().id, history.get_current_revision().id
        )

    def get_workspace_source_comparison(self, project_id: str, spec: WorkspaceSpecification) -> Comparison:
        """Source stream HEAD -> workspace HEAD."""
        workspace = RevisionHistory(self._store, project_id, spec)
        workspace_head = workspace.get_current_revision().id
        stream_head = RevisionHistory(self._store, project_id, spec.source).get_current_revision().id
        return self.compare_revisions(project_id, stream_head, workspace_head)
