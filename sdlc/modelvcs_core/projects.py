"""
Projects: the top-level container of streams, workspaces and versions.

Creating a project creates its main line at an empty root revision
("Initial commit").
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import InvalidArgumentError, NotFoundError, SdlcError
from .history.revisions import RevisionHistory
from .model.types import MAIN_LINE, Project, Version
from .release.versions import VersionManager
from .store.base import VersionedStore
from .streams import stream_pointer

logger = logging.getLogger(__name__)

_PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


@dataclass(frozen=True)
class RevisionStatus:
    """Where a revision stands relative to the main line and releases."""

    revision_id: str
    committed: bool
    versions: tuple[Version, ...] = ()

    @property
    def released(self) -> bool:
        return bool(self.versions)


class ProjectManager:
    def __init__(self, store: VersionedStore, versions: VersionManager, default_author: str = "system") -> None:
        self._store = store
        self._versions = versions
        self.default_author = default_author

    def create_project(
        self,
        project_id: str,
        name: Optional[str] = None,
        description: str = "",
        tags: Iterable[str] = (),
        author: Optional[str] = None,
    ) -> Project:
        """Create a project and its main line at revision R0.

        Raises:
            InvalidArgumentError: If the id is empty or malformed
            ConflictError: If the project already exists
        """
        if not project_id or not _PROJECT_ID_PATTERN.match(project_id):
            raise InvalidArgumentError(f"Invalid project id: {project_id!r}")
        project = Project(project_id, name or project_id, description, tuple(tags))
        try:
            root = self._store.create_project(project, stream_pointer(MAIN_LINE), author or self.default_author)
        except SdlcError as e:
            raise e.annotate("create project", project_id=project_id)
        logger.info("Project created", extra={"project_id": project_id, "revision_id": root.id})
        return project

    def get_project(self, project_id: str) -> Project:
        return self._store.get_project(project_id)

    def get_projects(self, tag: Optional[str] = None) -> list[Project]:
        projects = self._store.list_projects()
        if tag is None:
            return projects
        return [p for p in projects if tag in p.tags]

    def delete_project(self, project_id: str) -> None:
        try:
            self._store.delete_project(project_id)
        except SdlcError as e:
            raise e.annotate("delete project", project_id=project_id)
        logger.info("Project deleted", extra={"project_id": project_id})

    def get_revision_status(self, project_id: str, revision_id: str) -> RevisionStatus:
        """Whether a revision is on the main line, and which versions tag it.

        Raises:
            NotFoundError: If the revision does not exist in the project
        """
        self._store.get_revision(project_id, revision_id)
        try:
            RevisionHistory(self._store, project_id, MAIN_LINE).get_revision(revision_id)
            committed = True
        except NotFoundError:
            committed = False
        return RevisionStatus(
            revision_id=revision_id,
            committed=committed,
            versions=tuple(self._versions.get_revision_versions(project_id, revision_id)),
        )
