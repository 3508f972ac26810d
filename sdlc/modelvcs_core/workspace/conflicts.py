"""
Conflict resolution for workspace updates.

When a workspace update finds paths changed on both the workspace
(LOCAL) and its stream (UPSTREAM) since the workspace BASE, the coordinator
sets up two shadow lines next to the primary workspace:

    backup               exact copy of the workspace before the update
    conflict-resolution  stream HEAD plus every change that merged cleanly

The primary workspace pointer is left untouched until the resolution is
accepted or discarded.

Invariants:
    - Conflicts are recomputed from (backup BASE, backup HEAD, resolution
      BASE), so they stay stable while the resolution is in progress
    - A conflicting path counts as resolved once the accepted changes touch
      it or the resolution line already differs from upstream there
    - There is no content-level merging; the entity is the unit of conflict
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..errors import ConflictError
from ..model.merge import MergeResult
from ..model.types import (
    EntityChange,
    EntityChangeType,
    EntityConflict,
    WorkspaceSpecification,
    WorkspaceUpdateReport,
    WorkspaceUpdateStatus,
    same_entity,
)
from ..store.base import Pointer, VersionedStore
from ..streams import workspace_pointer
from .transitions import publish_pointer

logger = logging.getLogger(__name__)


class ConflictResolutionCoordinator:
    """Three-way conflict detection and the resolution shadow lines."""

    def __init__(self, store: VersionedStore) -> None:
        self._store = store

    def merge(self, project_id: str, base_revision_id: str, local_revision_id: str,
              upstream_revision_id: str) -> MergeResult:
        return self._store.three_way_merge(
            project_id, base_revision_id, local_revision_id, upstream_revision_id
        )

    def begin(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        workspace: Pointer,
        upstream_revision_id: str,
        merge: MergeResult,
        author: str,
    ) -> WorkspaceUpdateReport:
        """Create the backup and conflict-resolution lines for a conflicting update.

        Args:
            project_id: Project id
            spec: Primary workspace specification
            workspace: Current primary workspace pointer
            upstream_revision_id: Stream HEAD the workspace is being updated to
            merge: Result of merging the workspace onto that HEAD
            author: Author of the auto-merge commit

        Returns:
            A CONFLICT report carrying the conflicting paths
        """
        backup_name = workspace_pointer(spec.backup)
        resolution_name = workspace_pointer(spec.conflict_resolution)
        publish_pointer(
            self._store, project_id, backup_name,
            workspace.revision_id, workspace.base_revision_id,
        )
        try:
            resolution = publish_pointer(
                self._store, project_id, resolution_name,
                upstream_revision_id,
                changes=merge.changes,
                author=author,
                message=f"Merge changes from {spec.workspace_id} that apply cleanly",
                replace=False,
                project_configuration=merge.project_configuration,
            )
        except Exception:
            self._store.delete_pointer(project_id, backup_name)
            raise
        logger.info(
            "Workspace entered conflict resolution",
            extra={
                "project_id": project_id,
                "workspace_id": spec.workspace_id,
                "workspace_type": spec.type.value,
                "upstream_revision_id": upstream_revision_id,
                "conflicts": [c.path for c in merge.conflicts],
            },
        )
        return WorkspaceUpdateReport(
            status=WorkspaceUpdateStatus.CONFLICT,
            merge_base_revision_id=upstream_revision_id,
            revision_id=resolution.revision_id,
            conflicts=merge.conflicts,
        )

    def _resolution_pointers(self, project_id: str, spec: WorkspaceSpecification) -> tuple[Pointer, Optional[Pointer]]:
        resolution = self._store.get_pointer(project_id, workspace_pointer(spec.conflict_resolution))
        if resolution is None:
            raise ConflictError(
                f"{spec.primary} in project {project_id} is not in conflict resolution"
            )
        backup = self._store.get_pointer(project_id, workspace_pointer(spec.backup))
        return resolution, backup

    def get_conflicts(self, project_id: str, spec: WorkspaceSpecification) -> tuple[EntityConflict, ...]:
        """The conflicts of an in-progress resolution, recomputed from stored lines."""
        resolution, backup = self._resolution_pointers(project_id, spec)
        if backup is None:
            return ()
        return self.merge(
            project_id, backup.base_revision_id, backup.revision_id, resolution.base_revision_id
        ).conflicts

    def unresolved_paths(self, project_id: str, spec: WorkspaceSpecification,
                         changes: Iterable[EntityChange]) -> list[str]:
        """Conflicting paths neither covered by ``changes`` nor already edited."""
        resolution, _ = self._resolution_pointers(project_id, spec)
        conflicts = self.get_conflicts(project_id, spec)
        if not conflicts:
            return []
        touched = set()
        for change in changes:
            touched.add(change.entity_path)
            if change.type is EntityChangeType.RENAME:
                touched.add(change.new_entity_path)
        current = self._store.read_entities(project_id, resolution.revision_id)
        upstream = self._store.read_entities(project_id, resolution.base_revision_id)
        return [
            c.path for c in conflicts
            if c.path not in touched
            and same_entity(current.find(c.path), upstream.find(c.path))
        ]
