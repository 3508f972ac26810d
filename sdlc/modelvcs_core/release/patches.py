"""
Patch release lines.

A patch is an independent stream branched from a released Version. It
produces the version ``source.next_patch()``; that id also identifies the
patch. Once a Version with the patch id exists the patch is released and
accepts no new workspaces, though its history stays readable.

Policy on deletion: cascade. Every workspace line on the patch is deleted
with it, and open reviews on the patch are closed in the background.

Invariants:
    - At most one patch per VersionId
    - A patch never exists for an id that is already a Version
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..errors import ConflictError, NotFoundError, SdlcError
from ..model.types import Patch, PatchStream, Version
from ..model.version_id import UNBOUNDED, VersionBounds, VersionId
from ..store.base import Pointer, VersionedStore
from ..streams import PATCH_STREAM_PREFIX, parse_patch_pointer, stream_pointer
from ..worker import BackgroundTaskProcessor
from ..workspace.manager import WorkspaceManager
from .versions import VersionManager

if TYPE_CHECKING:
    from ..review.reviews import ReviewManager

logger = logging.getLogger(__name__)


class PatchManager:
    """Creates, lists, deletes and releases patches.

    Example:
        >>> patches = PatchManager(store, versions, workspaces)
        >>> patch = patches.new_patch("p1", VersionId(1, 0, 0))
        >>> str(patch.version_id)
        '1.0.1'
    """

    def __init__(
        self,
        store: VersionedStore,
        versions: VersionManager,
        workspaces: WorkspaceManager,
        worker: Optional[BackgroundTaskProcessor] = None,
    ) -> None:
        self._store = store
        self._versions = versions
        self._workspaces = workspaces
        self._worker = worker
        self.reviews: Optional[ReviewManager] = None

    def _to_patch(self, project_id: str, pointer: Pointer, version_id: VersionId) -> Patch:
        source = [v.id for v in self._versions.get_revision_versions(project_id, pointer.base_revision_id)]
        return Patch(
            project_id=project_id,
            version_id=version_id,
            source_version_id=source[0] if source else None,
            released=self.is_released(project_id, version_id),
        )

    def is_released(self, project_id: str, version_id: VersionId) -> bool:
        return self._versions.get_version(project_id, version_id) is not None

    def get_patches(self, project_id: str, bounds: VersionBounds = UNBOUNDED) -> list[Patch]:
        """Patches within ``bounds``, ascending by version id."""
        patches = []
        for pointer in self._store.list_pointers(project_id, PATCH_STREAM_PREFIX):
            version_id = parse_patch_pointer(pointer.name)
            if version_id is not None and bounds.matches(version_id):
                patches.append(self._to_patch(project_id, pointer, version_id))
        return sorted(patches, key=lambda p: p.version_id)

    def _require_pointer(self, project_id: str, version_id: VersionId) -> Pointer:
        pointer = self._store.get_pointer(project_id, stream_pointer(PatchStream(version_id)))
        if pointer is None:
            raise NotFoundError(
                f"Unknown patch {version_id} in project {project_id}",
                resource_type="patch",
                resource_id=str(version_id),
            )
        return pointer

    def get_patch(self, project_id: str, version_id: VersionId) -> Patch:
        return self._to_patch(project_id, self._require_pointer(project_id, version_id), version_id)

    def new_patch(self, project_id: str, source_version_id: VersionId) -> Patch:
        """Branch a patch from an existing version.

        Raises:
            NotFoundError: If the source version does not exist
            ConflictError: If the patch, or a version with its id, already exists
        """
        source = self._versions.get_version(project_id, source_version_id)
        if source is None:
            raise NotFoundError(
                f"Cannot create patch: version {source_version_id} does not exist in project {project_id}",
                resource_type="version",
                resource_id=str(source_version_id),
            )
        version_id = source_version_id.next_patch()
        stream = PatchStream(version_id)
        with self._workspaces.hold_stream(project_id, stream), self._versions.hold(project_id):
            if self._versions.get_version(project_id, version_id) is not None:
                raise ConflictError(
                    f"Cannot create patch {version_id}: version {version_id} already exists"
                )
            try:
                self._store.create_pointer(
                    project_id, stream_pointer(stream), source.revision_id
                )
            except SdlcError as e:
                raise e.annotate("create patch", project_id=project_id, version_id=str(version_id))
        logger.info(
            "Patch created",
            extra={
                "project_id": project_id,
                "version_id": str(version_id),
                "source_version_id": str(source_version_id),
                "revision_id": source.revision_id,
            },
        )
        return Patch(project_id, version_id, source_version_id, released=False)

    def delete_patch(self, project_id: str, version_id: VersionId) -> None:
        """Delete a patch, its workspaces, and (in the background) its open reviews."""
        stream = PatchStream(version_id)
        with self._workspaces.hold_stream(project_id, stream):
            self._require_pointer(project_id, version_id)
            deleted = self._workspaces.delete_stream_workspaces(project_id, stream)
            try:
                self._store.delete_pointer(project_id, stream_pointer(stream))
            except SdlcError as e:
                raise e.annotate("delete patch", project_id=project_id, version_id=str(version_id))
        logger.info(
            "Patch deleted",
            extra={
                "project_id": project_id,
                "version_id": str(version_id),
                "deleted_workspaces": [s.workspace_id for s in deleted],
            },
        )
        self._close_reviews(project_id, stream, "patch deleted")

    def release_patch(self, project_id: str, version_id: VersionId, notes: str = "") -> Version:
        """Create the patch's Version at its current HEAD.

        Raises:
            NotFoundError: If the patch does not exist
            ConflictError: If the patch has already been released
        """
        stream = PatchStream(version_id)
        with self._workspaces.hold_stream(project_id, stream):
            pointer = self._require_pointer(project_id, version_id)
            if self.is_released(project_id, version_id):
                raise ConflictError(f"Patch {version_id} in project {project_id} is already released")
            version = self._versions.create_version(
                project_id, version_id, pointer.revision_id, notes, stream
            )
        logger.info(
            "Patch released",
            extra={"project_id": project_id, "version_id": str(version_id), "revision_id": version.revision_id},
        )
        self._close_reviews(project_id, stream, "patch released")
        return version

    def _close_reviews(self, project_id: str, stream: PatchStream, reason: str) -> None:
        reviews = self.reviews
        if reviews is None:
            return

        def close() -> None:
            reviews.close_stream_reviews(project_id, stream, reason)

        if self._worker is None:
            close()
        else:
            self._worker.submit_retryable_task(
                close, f"close open reviews of patch {stream.version_id} in project {project_id} ({reason})"
            )
