"""
Workspace lifecycle state machine.

States are derived from which pointers exist for a workspace key
``(stream, workspace_id, type)``:

    primary only                     -> ACTIVE
    primary + conflict-resolution    -> IN_CONFLICT_RESOLUTION
    none                             -> DELETED
    backup line on its own           -> BACKED_UP (addressed via access type)

Transitions:
    create                       none -> ACTIVE, BASE := stream HEAD
    update (clean)               ACTIVE -> ACTIVE, BASE := stream HEAD
    update (overlap)             ACTIVE -> IN_CONFLICT_RESOLUTION
    accept_conflict_resolution   IN_CONFLICT_RESOLUTION -> ACTIVE
    discard_conflict_resolution  IN_CONFLICT_RESOLUTION -> ACTIVE (pre-update state)
    discard_changes              ACTIVE | IN_CONFLICT_RESOLUTION -> ACTIVE at stream HEAD
    delete                       any -> DELETED (idempotent)

Invariants:
    - Transitions on one workspace key are serialized by a keyed lock;
      different keys never wait on each other
    - Creating a workspace on a patch holds the patch lock first, so it
      cannot interleave with deleting or releasing that patch
    - Every transition publishes its new state with one atomic pointer
      rename, or fails leaving the previous state unchanged
    - Backup and conflict-resolution lines never appear in primary listings

How to change safely:
    - Any new transition must go through publish_pointer()
    - Keep the released-patch check in create_workspace only; updates on
      existing workspaces stay possible
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Optional, Sequence

from ..errors import ConflictError, InvalidArgumentError, NotFoundError, SdlcError
from ..locks import KeyedLock
from ..model.types import (
    MAIN_LINE,
    DevelopmentStream,
    EntityChange,
    EntityConflict,
    PatchStream,
    Workspace,
    WorkspaceAccessType,
    WorkspaceSpecification,
    WorkspaceState,
    WorkspaceType,
    WorkspaceUpdateReport,
    WorkspaceUpdateStatus,
)
from ..store.base import Pointer, VersionedStore
from ..store.entity_store import validate_entity_changes
from ..streams import (
    WORKSPACE_PREFIX,
    parse_workspace_pointer,
    stream_pointer,
    validate_workspace_id,
    version_tag,
    workspace_pointer,
    workspace_prefix,
)
from ..worker import BackgroundTaskProcessor
from .conflicts import ConflictResolutionCoordinator
from .transitions import publish_pointer

logger = logging.getLogger(__name__)


class WorkspaceManager:
    """Creates, updates and retires workspaces.

    Attributes:
        coordinator: Conflict resolution coordinator used by update()

    Example:
        >>> manager = WorkspaceManager(store)
        >>> ws = manager.create_workspace("p1", "alice")
        >>> manager.is_outdated("p1", ws.spec)
        False
    """

    def __init__(
        self,
        store: VersionedStore,
        worker: Optional[BackgroundTaskProcessor] = None,
        locks: Optional[KeyedLock] = None,
        default_author: str = "system",
    ) -> None:
        self._store = store
        self._worker = worker
        self._locks = locks or KeyedLock()
        self.default_author = default_author
        self.coordinator = ConflictResolutionCoordinator(store)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def hold(self, project_id: str, spec: WorkspaceSpecification):
        """Lock serializing transitions of one workspace key."""
        return self._locks.hold(("workspace", project_id) + spec.key)

    def hold_stream(self, project_id: str, stream: DevelopmentStream):
        """Lock serializing workspace creation with deletion and release of a patch."""
        if isinstance(stream, PatchStream):
            return self._locks.hold(("patch", project_id, stream.version_id))
        return nullcontext()

    def _pointer(self, project_id: str, spec: WorkspaceSpecification) -> Optional[Pointer]:
        return self._store.get_pointer(project_id, workspace_pointer(spec))

    def _require_pointer(self, project_id: str, spec: WorkspaceSpecification) -> Pointer:
        pointer = self._pointer(project_id, spec)
        if pointer is None:
            raise NotFoundError(
                f"Unknown {spec} in project {project_id}",
                resource_type="workspace",
                resource_id=spec.workspace_id,
            )
        return pointer

    def _stream_head(self, project_id: str, stream: DevelopmentStream) -> str:
        pointer = self._store.get_pointer(project_id, stream_pointer(stream))
        if pointer is None:
            raise NotFoundError(
                f"Unknown {stream} stream in project {project_id}",
                resource_type="stream",
                resource_id=stream_pointer(stream),
            )
        return pointer.revision_id

    def _to_workspace(self, project_id: str, spec: WorkspaceSpecification, pointer: Pointer) -> Workspace:
        return Workspace(
            project_id=project_id,
            spec=spec,
            base_revision_id=pointer.base_revision_id,
            head_revision_id=pointer.revision_id,
            created_at=pointer.created_at,
        )

    def _log(self, message: str, project_id: str, spec: WorkspaceSpecification, **extra) -> None:
        logger.info(
            message,
            extra={
                "project_id": project_id,
                "workspace_id": spec.workspace_id,
                "workspace_type": spec.type.value,
                "stream": str(spec.source),
                **extra,
            },
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_workspace(self, project_id: str, spec: WorkspaceSpecification) -> Workspace:
        """Get one workspace line (primary, backup or conflict resolution)."""
        return self._to_workspace(project_id, spec, self._require_pointer(project_id, spec))

    def _list(self, project_id: str, prefix: str, access_type: WorkspaceAccessType,
              workspace_type: Optional[WorkspaceType]) -> list[Workspace]:
        workspaces = []
        for pointer in self._store.list_pointers(project_id, prefix):
            spec = parse_workspace_pointer(pointer.name)
            if spec is None or spec.access_type is not access_type:
                continue
            if workspace_type is not None and spec.type is not workspace_type:
                continue
            workspaces.append(self._to_workspace(project_id, spec, pointer))
        return workspaces

    def get_workspaces(
        self,
        project_id: str,
        stream: DevelopmentStream = MAIN_LINE,
        workspace_type: Optional[WorkspaceType] = None,
    ) -> list[Workspace]:
        """Primary workspaces of one stream."""
        return self._list(
            project_id, workspace_prefix(stream), WorkspaceAccessType.WORKSPACE, workspace_type
        )

    def get_all_workspaces(self, project_id: str, workspace_type: Optional[WorkspaceType] = None) -> list[Workspace]:
        """Primary workspaces across every stream of a project."""
        return self._list(project_id, WORKSPACE_PREFIX, WorkspaceAccessType.WORKSPACE, workspace_type)

    def get_backup_workspaces(
        self,
        project_id: str,
        stream: DevelopmentStream = MAIN_LINE,
        workspace_type: Optional[WorkspaceType] = None,
    ) -> list[Workspace]:
        return self._list(project_id, workspace_prefix(stream), WorkspaceAccessType.BACKUP, workspace_type)

    def get_backup_workspace(self, project_id: str, spec: WorkspaceSpecification) -> Workspace:
        return self.get_workspace(project_id, spec.backup)

    def get_workspaces_with_conflict_resolution(
        self,
        project_id: str,
        stream: DevelopmentStream = MAIN_LINE,
        workspace_type: Optional[WorkspaceType] = None,
    ) -> list[Workspace]:
        return self._list(
            project_id, workspace_prefix(stream), WorkspaceAccessType.CONFLICT_RESOLUTION, workspace_type
        )

    def get_workspace_with_conflict_resolution(self, project_id: str, spec: WorkspaceSpecification) -> Workspace:
        return self.get_workspace(project_id, spec.conflict_resolution)

    def is_outdated(self, project_id: str, spec: WorkspaceSpecification) -> bool:
        """Whether the stream HEAD has moved past the workspace BASE."""
        pointer = self._require_pointer(project_id, spec)
        return self._stream_head(project_id, spec.source) != pointer.base_revision_id

    def is_in_conflict_resolution(self, project_id: str, spec: WorkspaceSpecification) -> bool:
        return self._pointer(project_id, spec.conflict_resolution) is not None

    def get_state(self, project_id: str, spec: WorkspaceSpecification) -> WorkspaceState:
        """Derived lifecycle state of a workspace line."""
        if spec.access_type is WorkspaceAccessType.BACKUP:
            exists = self._pointer(project_id, spec) is not None
            return WorkspaceState.BACKED_UP if exists else WorkspaceState.DELETED
        if self.is_in_conflict_resolution(project_id, spec):
            return WorkspaceState.IN_CONFLICT_RESOLUTION
        if self._pointer(project_id, spec.primary) is not None:
            return WorkspaceState.ACTIVE
        return WorkspaceState.DELETED

    def get_conflicts(self, project_id: str, spec: WorkspaceSpecification) -> tuple[EntityConflict, ...]:
        """Conflicting paths of an in-progress resolution."""
        return self.coordinator.get_conflicts(project_id, spec)

    def is_stream_released(self, project_id: str, stream: DevelopmentStream) -> bool:
        if not isinstance(stream, PatchStream):
            return False
        return any(
            tag.name == version_tag(stream.version_id)
            for tag in self._store.list_tags(project_id, version_tag(stream.version_id))
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def create_workspace(
        self,
        project_id: str,
        workspace_id: str,
        workspace_type: WorkspaceType = WorkspaceType.USER,
        source: DevelopmentStream = MAIN_LINE,
    ) -> Workspace:
        """Create a primary workspace with BASE = current stream HEAD.

        Raises:
            InvalidArgumentError: If the workspace id is malformed
            NotFoundError: If the project or stream does not exist
            ConflictError: If the workspace exists or the patch is released
        """
        validate_workspace_id(workspace_id)
        spec = WorkspaceSpecification(workspace_id, workspace_type, WorkspaceAccessType.WORKSPACE, source)
        self._store.get_project(project_id)
        with self.hold_stream(project_id, source), self.hold(project_id, spec):
            head = self._stream_head(project_id, source)
            if self.is_stream_released(project_id, source):
                raise ConflictError(
                    f"Cannot create {spec}: {source} has already been released"
                )
            if self._pointer(project_id, spec) is not None or self.is_in_conflict_resolution(project_id, spec):
                raise ConflictError(f"{spec} already exists in project {project_id}")
            try:
                pointer = self._store.create_pointer(project_id, workspace_pointer(spec), head, head)
            except SdlcError as e:
                raise e.annotate("create workspace", project_id=project_id, workspace_id=workspace_id)
        self._log("Workspace created", project_id, spec, base_revision_id=head)
        return self._to_workspace(project_id, spec, pointer)

    def update(self, project_id: str, spec: WorkspaceSpecification,
               author: Optional[str] = None) -> WorkspaceUpdateReport:
        """Rebase a workspace onto the current HEAD of its stream.

        Returns:
            NO_OP if already up to date, UPDATED after a clean rebase, or
            CONFLICT after entering conflict resolution

        Raises:
            NotFoundError: If the workspace does not exist
            ConflictError: If the workspace is already in conflict resolution
        """
        spec = spec.primary
        author = author or self.default_author
        with self.hold(project_id, spec):
            workspace = self._require_pointer(project_id, spec)
            if self.is_in_conflict_resolution(project_id, spec):
                raise ConflictError(
                    f"{spec} in project {project_id} is in conflict resolution; "
                    "accept or discard the resolution instead of updating"
                )
            upstream = self._stream_head(project_id, spec.source)
            if workspace.base_revision_id == upstream:
                return WorkspaceUpdateReport(
                    WorkspaceUpdateStatus.NO_OP, upstream, workspace.revision_id
                )
            try:
                merge = self.coordinator.merge(
                    project_id, workspace.base_revision_id, workspace.revision_id, upstream
                )
                if not merge.is_clean:
                    return self.coordinator.begin(project_id, spec, workspace, upstream, merge, author)
                pointer = publish_pointer(
                    self._store, project_id, workspace_pointer(spec), upstream,
                    changes=merge.changes,
                    author=author,
                    message=f"Update {spec.workspace_id} to {upstream}",
                    project_configuration=merge.project_configuration,
                )
            except SdlcError as e:
                raise e.annotate("update workspace", project_id=project_id, workspace_id=spec.workspace_id)
        self._log(
            "Workspace updated", project_id, spec,
            base_revision_id=upstream, revision_id=pointer.revision_id,
        )
        return WorkspaceUpdateReport(WorkspaceUpdateStatus.UPDATED, upstream, pointer.revision_id)

    def accept_conflict_resolution(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        changes: Sequence[EntityChange] = (),
        message: str = "Resolve conflicts",
        author: Optional[str] = None,
    ) -> Workspace:
        """Commit the resolution and make it the workspace.

        Raises:
            InvalidArgumentError: If changes are malformed or leave conflicts unresolved
            ConflictError: If the workspace is not in conflict resolution
        """
        spec = spec.primary
        author = author or self.default_author
        validate_entity_changes(changes)
        with self.hold(project_id, spec):
            self._require_pointer(project_id, spec)
            unresolved = self.coordinator.unresolved_paths(project_id, spec, changes)
            if unresolved:
                raise InvalidArgumentError.from_errors(
                    [f"Conflict at {path!r} is not resolved" for path in unresolved],
                    f"{len(unresolved)} conflicts are not resolved",
                )
            resolution_name = workspace_pointer(spec.conflict_resolution)
            try:
                if changes:
                    resolution = self._require_pointer(project_id, spec.conflict_resolution)
                    self._store.commit(
                        project_id, resolution_name, resolution.revision_id, list(changes), author, message
                    )
                pointer = self._store.rename_pointer(
                    project_id, resolution_name, workspace_pointer(spec), replace=True
                )
            except SdlcError as e:
                raise e.annotate(
                    "accept conflict resolution", project_id=project_id, workspace_id=spec.workspace_id
                )
            backup = self._pointer(project_id, spec.backup)
        self._log(
            "Conflict resolution accepted", project_id, spec,
            base_revision_id=pointer.base_revision_id, revision_id=pointer.revision_id,
        )
        if backup is not None:
            self._schedule_backup_cleanup(project_id, spec, backup.revision_id)
        return self._to_workspace(project_id, spec, pointer)

    def _schedule_backup_cleanup(self, project_id: str, spec: WorkspaceSpecification,
                                 backup_revision_id: str) -> None:
        def cleanup() -> None:
            with self.hold(project_id, spec):
                backup = self._pointer(project_id, spec.backup)
                if (
                    backup is not None
                    and backup.revision_id == backup_revision_id
                    and not self.is_in_conflict_resolution(project_id, spec)
                ):
                    self._store.delete_pointer(project_id, workspace_pointer(spec.backup))

        if self._worker is None:
            cleanup()
        else:
            self._worker.submit_retryable_task(cleanup, f"delete backup of {spec} in project {project_id}")

    def discard_conflict_resolution(self, project_id: str, spec: WorkspaceSpecification) -> Workspace:
        """Abandon a resolution and restore the workspace as it was before update().

        Raises:
            ConflictError: If the workspace is not in conflict resolution
        """
        spec = spec.primary
        with self.hold(project_id, spec):
            if not self.is_in_conflict_resolution(project_id, spec):
                raise ConflictError(f"{spec} in project {project_id} is not in conflict resolution")
            try:
                if self._pointer(project_id, spec.backup) is not None:
                    pointer = self._store.rename_pointer(
                        project_id, workspace_pointer(spec.backup), workspace_pointer(spec), replace=True
                    )
                else:
                    pointer = self._require_pointer(project_id, spec)
                self._store.delete_pointer(project_id, workspace_pointer(spec.conflict_resolution))
            except SdlcError as e:
                raise e.annotate(
                    "discard conflict resolution", project_id=project_id, workspace_id=spec.workspace_id
                )
        self._log("Conflict resolution discarded", project_id, spec, revision_id=pointer.revision_id)
        return self._to_workspace(project_id, spec, pointer)

    def discard_changes(self, project_id: str, spec: WorkspaceSpecification) -> Workspace:
        """Reset a workspace to the current stream HEAD with no changes."""
        spec = spec.primary
        with self.hold(project_id, spec):
            self._require_pointer(project_id, spec)
            try:
                head = self._stream_head(project_id, spec.source)
                pointer = publish_pointer(self._store, project_id, workspace_pointer(spec), head)
                self._store.delete_pointer(project_id, workspace_pointer(spec.conflict_resolution))
                self._store.delete_pointer(project_id, workspace_pointer(spec.backup))
            except SdlcError as e:
                raise e.annotate("discard workspace changes", project_id=project_id,
                                 workspace_id=spec.workspace_id)
        self._log("Workspace changes discarded", project_id, spec, base_revision_id=head)
        return self._to_workspace(project_id, spec, pointer)

    def delete_workspace(self, project_id: str, spec: WorkspaceSpecification) -> bool:
        """Delete a workspace and its shadow lines. Returns whether anything existed."""
        spec = spec.primary
        validate_workspace_id(spec.workspace_id)
        with self.hold(project_id, spec):
            try:
                deleted = False
                for access_spec in (spec.conflict_resolution, spec.backup, spec):
                    deleted = self._store.delete_pointer(project_id, workspace_pointer(access_spec)) or deleted
            except SdlcError as e:
                raise e.annotate("delete workspace", project_id=project_id, workspace_id=spec.workspace_id)
        if deleted:
            self._log("Workspace deleted", project_id, spec)
        return deleted

    def delete_stream_workspaces(self, project_id: str, stream: DevelopmentStream) -> list[WorkspaceSpecification]:
        """Delete every workspace line on a stream (used when a patch is deleted)."""
        specs = []
        for pointer in self._store.list_pointers(project_id, workspace_prefix(stream)):
            spec = parse_workspace_pointer(pointer.name)
            if spec is not None and spec.primary not in specs:
                specs.append(spec.primary)
        for spec in specs:
            self.delete_workspace(project_id, spec)
        return specs
