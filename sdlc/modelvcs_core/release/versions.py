"""
Write-once release versions.

A Version is a store tag named ``release-<id>`` bound to a revision. One
version namespace is shared by the main line and every patch of a project.

Increment rules (applied to the latest version, or to 0.0.0 if none):
    MAJOR -> (major + 1, 0, 0)
    MINOR -> (major, minor + 1, 0)
    PATCH -> (major, minor, patch + 1)

Invariants:
    - A version id is created at most once and never moved
    - A revision carries at most one version
    - new_version never takes the id an open patch will release as
    - Version creation is serialized per project; the tag write itself is
      compare-and-swap in the store, so racing writers still get ConflictError
    - Missing versions are reported as None or an empty list, not as errors
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from ..errors import ConflictError, SdlcError
from ..history.revisions import RevisionHistory
from ..locks import KeyedLock
from ..model.types import MAIN_LINE, DevelopmentStream, PatchStream, Version
from ..model.version_id import UNBOUNDED, VersionBounds, VersionId, VersionType
from ..store.base import Tag, VersionedStore
from ..streams import VERSION_TAG_PREFIX, parse_version_tag, stream_pointer, version_tag

logger = logging.getLogger(__name__)


class VersionManager:
    """Lists and creates project versions.

    Example:
        >>> versions = VersionManager(store)
        >>> versions.new_version("p1", VersionType.MINOR, revision_id).id
        VersionId(major=0, minor=1, patch=0)
    """

    def __init__(self, store: VersionedStore, locks: Optional[KeyedLock] = None) -> None:
        self._store = store
        self._locks = locks or KeyedLock()

    def hold(self, project_id: str):
        """Lock serializing version creation in one project."""
        return self._locks.hold(("versions", project_id))

    def _to_version(self, project_id: str, tag: Tag) -> Optional[Version]:
        version_id = parse_version_tag(tag.name)
        if version_id is None:
            return None
        return Version(version_id, project_id, tag.revision_id, tag.message, tag.created_at)

    def get_versions(self, project_id: str, bounds: VersionBounds = UNBOUNDED) -> list[Version]:
        """All versions within ``bounds``, ascending by version id."""
        versions = [
            version
            for version in (self._to_version(project_id, t) for t in self._store.list_tags(project_id, VERSION_TAG_PREFIX))
            if version is not None and bounds.matches(version.id)
        ]
        return sorted(versions, key=lambda v: v.id)

    def get_latest_version(self, project_id: str, bounds: VersionBounds = UNBOUNDED) -> Optional[Version]:
        versions = self.get_versions(project_id, bounds)
        return versions[-1] if versions else None

    def get_version(self, project_id: str, version: Union[VersionId, int], minor: Optional[int] = None,
                    patch: Optional[int] = None) -> Optional[Version]:
        """Exact lookup by VersionId or by (major, minor, patch); None if absent."""
        version_id = version if isinstance(version, VersionId) else VersionId(version, minor, patch)
        for tag in self._store.list_tags(project_id, version_tag(version_id)):
            if tag.name == version_tag(version_id):
                return self._to_version(project_id, tag)
        return None

    def get_revision_versions(self, project_id: str, revision_id: str) -> list[Version]:
        return [v for v in self.get_versions(project_id) if v.revision_id == revision_id]

    def new_version(
        self,
        project_id: str,
        version_type: VersionType,
        revision_id: Optional[str] = None,
        notes: str = "",
    ) -> Version:
        """Tag a main-line revision with the next version id.

        Args:
            project_id: Project id
            version_type: Which component to increment
            revision_id: Main-line revision to release (defaults to HEAD)
            notes: Release notes

        Raises:
            NotFoundError: If the revision is not on the main line
            ConflictError: If the revision is already released or the id is taken,
                or an open patch will produce that id
        """
        with self.hold(project_id):
            latest = self.get_latest_version(project_id)
            version_id = (latest.id if latest is not None else VersionId(0, 0, 0)).next(version_type)
            if self._store.get_pointer(project_id, stream_pointer(PatchStream(version_id))) is not None:
                raise ConflictError(
                    f"Cannot create version {version_id}: patch {version_id} is open in project {project_id}; "
                    "release or delete the patch first"
                )
            return self._create(project_id, version_id, revision_id, notes, MAIN_LINE)

    def create_version(
        self,
        project_id: str,
        version_id: VersionId,
        revision_id: Optional[str],
        notes: str,
        stream: DevelopmentStream,
    ) -> Version:
        """Tag a revision of ``stream`` with an explicit version id (patch releases)."""
        with self.hold(project_id):
            return self._create(project_id, version_id, revision_id, notes, stream)

    def _create(
        self,
        project_id: str,
        version_id: VersionId,
        revision_id: Optional[str],
        notes: str,
        stream: DevelopmentStream,
    ) -> Version:
        revision = RevisionHistory(self._store, project_id, stream).resolve(revision_id)
        existing = self.get_revision_versions(project_id, revision.id)
        if existing:
            raise ConflictError(
                f"Revision {revision.id} of project {project_id} is already released as "
                f"version {existing[0].id}"
            )
        if self.get_version(project_id, version_id) is not None:
            raise ConflictError(f"Version {version_id} already exists in project {project_id}")
        try:
            tag = self._store.create_tag(project_id, version_tag(version_id), revision.id, notes)
        except SdlcError as e:
            raise e.annotate("create version", project_id=project_id, version_id=str(version_id))
        logger.info(
            "Version created",
            extra={
                "project_id": project_id,
                "version_id": str(version_id),
                "revision_id": revision.id,
                "stream": str(stream),
            },
        )
        return Version(version_id, project_id, revision.id, notes, tag.created_at)
