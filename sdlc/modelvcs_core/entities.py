"""
Entity CRUD per revision.

Reads address any source (a stream or a workspace line) at any revision of
that source. Writes go to workspaces only; streams advance through review
commits.

Write access by workspace line:
    WORKSPACE              allowed unless the workspace is in conflict resolution
    CONFLICT_RESOLUTION    allowed (incremental resolution)
    BACKUP                 rejected

Invariants:
    - A change batch is validated completely before anything is written,
      and every problem is reported in one InvalidArgumentError
    - A batch is applied all-or-nothing
    - With ``revision_id`` given, a write only succeeds if it is still the
      workspace HEAD
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Sequence

from .errors import ConflictError, InvalidArgumentError, NotFoundError, SdlcError
from .history.revisions import RevisionHistory, RevisionRef
from .model import paths
from .model.types import (
    Entity,
    EntityChange,
    Revision,
    SourceSpecification,
    WorkspaceAccessType,
    WorkspaceSpecification,
)
from .store.base import VersionedStore
from .store.entity_store import validate_entity_changes
from .streams import workspace_pointer
from .workspace.manager import WorkspaceManager

logger = logging.getLogger(__name__)


def _matches(
    entity: Entity,
    package_paths: Optional[Sequence[str]],
    classifier_paths: Optional[Sequence[str]],
    include_sub_packages: bool,
) -> bool:
    if classifier_paths is not None and entity.classifier_path not in classifier_paths:
        return False
    if package_paths is not None:
        return any(paths.is_in_package(entity.path, p, include_sub_packages) for p in package_paths)
    return True


class EntityService:
    """Reads and writes entities of a project."""

    def __init__(
        self,
        store: VersionedStore,
        workspaces: WorkspaceManager,
        default_author: str = "system",
        revision_page_limit: Optional[int] = None,
    ) -> None:
        self._store = store
        self._workspaces = workspaces
        self.default_author = default_author
        self.revision_page_limit = revision_page_limit

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_revision_context(self, project_id: str, source: SourceSpecification) -> RevisionHistory:
        self._store.get_project(project_id)
        return RevisionHistory(self._store, project_id, source, default_limit=self.revision_page_limit)

    def get_entities(
        self,
        project_id: str,
        source: SourceSpecification,
        revision: RevisionRef = None,
        package_paths: Optional[Sequence[str]] = None,
        classifier_paths: Optional[Sequence[str]] = None,
        include_sub_packages: bool = True,
    ) -> list[Entity]:
        """Entities at ``revision`` (HEAD by default), sorted by path."""
        snapshot = self.get_revision_context(project_id, source).read_entities(revision)
        return list(snapshot.scan(
            lambda e: _matches(e, package_paths, classifier_paths, include_sub_packages)
        ))

    def get_entity(
        self, project_id: str, source: SourceSpecification, path: str, revision: RevisionRef = None
    ) -> Entity:
        return self.get_revision_context(project_id, source).read_entities(revision).get(path)

    def get_entity_paths(
        self,
        project_id: str,
        source: SourceSpecification,
        revision: RevisionRef = None,
        package_paths: Optional[Sequence[str]] = None,
        classifier_paths: Optional[Sequence[str]] = None,
        include_sub_packages: bool = True,
    ) -> list[str]:
        return [
            e.path for e in self.get_entities(
                project_id, source, revision, package_paths, classifier_paths, include_sub_packages
            )
        ]

    def get_packages(
        self, project_id: str, source: SourceSpecification, revision: RevisionRef = None
    ) -> list[str]:
        """Distinct package paths holding at least one entity, sorted."""
        return sorted({paths.package_of(e.path) for e in self.get_entities(project_id, source, revision)})

    def get_project_configuration(
        self, project_id: str, source: SourceSpecification, revision: RevisionRef = None
    ) -> dict[str, Any]:
        return self.get_revision_context(project_id, source).read_project_configuration(revision)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _check_writable(self, project_id: str, spec: SourceSpecification) -> WorkspaceSpecification:
        if not isinstance(spec, WorkspaceSpecification):
            raise InvalidArgumentError(
                f"Cannot write to the {spec} stream directly; commit a review instead"
            )
        if spec.access_type is WorkspaceAccessType.BACKUP:
            raise ConflictError(f"Cannot write to {spec}: backup lines are read-only")
        if spec.access_type is WorkspaceAccessType.WORKSPACE and \
                self._workspaces.is_in_conflict_resolution(project_id, spec):
            raise ConflictError(
                f"Cannot write to {spec} in project {project_id}: "
                "it is in conflict resolution; write to its conflict resolution line instead"
            )
        return spec

    def _commit(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        changes: list[EntityChange],
        revision_id: Optional[str],
        message: str,
        author: Optional[str],
        project_configuration: Optional[dict[str, Any]] = None,
    ) -> Revision:
        pointer = self._store.get_pointer(project_id, workspace_pointer(spec))
        if pointer is None:
            raise NotFoundError(
                f"Unknown {spec} in project {project_id}",
                resource_type="workspace",
                resource_id=spec.workspace_id,
            )
        if revision_id is not None and revision_id != pointer.revision_id:
            raise ConflictError(
                f"Cannot write to {spec}: expected HEAD {revision_id}, found {pointer.revision_id}",
                details={"expected_revision_id": revision_id, "actual_revision_id": pointer.revision_id},
            )
        revision = self._store.commit(
            project_id,
            pointer.name,
            pointer.revision_id,
            changes,
            author or self.default_author,
            message,
            project_configuration=project_configuration,
        )
        logger.info(
            "Workspace changes committed",
            extra={
                "project_id": project_id,
                "workspace_id": spec.workspace_id,
                "access_type": spec.access_type.value,
                "revision_id": revision.id,
                "changes": len(changes),
            },
        )
        return revision

    def perform_changes(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        changes: Iterable[EntityChange],
        revision_id: Optional[str] = None,
        message: str = "",
        author: Optional[str] = None,
    ) -> Optional[Revision]:
        """Apply a batch of entity changes as one new workspace revision.

        Returns None when ``changes`` is empty.

        Raises:
            InvalidArgumentError: If any change is malformed, or ``spec`` is a stream
            ConflictError: If ``revision_id`` is not the workspace HEAD, a CREATE
                targets an existing path, or the workspace line is not writable
            NotFoundError: If the workspace, or a path to modify, delete or rename,
                does not exist
        """
        changes = list(changes)
        validate_entity_changes(changes)
        spec = self._check_writable(project_id, spec)
        if not changes:
            return None
        with self._workspaces.hold(project_id, spec):
            spec = self._check_writable(project_id, spec)
            try:
                return self._commit(project_id, spec, changes, revision_id, message, author)
            except SdlcError as e:
                raise e.annotate("perform changes", project_id=project_id, workspace_id=spec.workspace_id)

    def update_entities(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        entities: Iterable[Entity],
        replace: bool = False,
        message: str = "",
        author: Optional[str] = None,
    ) -> Optional[Revision]:
        """Bring the workspace HEAD to the given entities.

        Creates and modifies as needed; with ``replace`` also deletes every
        entity not listed. Returns None when nothing differs.
        """
        desired = {}
        errors = []
        for entity in entities:
            if entity.path in desired:
                errors.append(f"Duplicate entity path: {entity.path}")
            desired[entity.path] = entity
        if errors:
            raise InvalidArgumentError.from_errors(errors, "Invalid entities")
        spec = self._check_writable(project_id, spec)
        with self._workspaces.hold(project_id, spec):
            head = self._workspaces.get_workspace(project_id, spec).head_revision_id
            current = self._store.read_entities(project_id, head)
            changes = []
            for path, entity in sorted(desired.items()):
                existing = current.find(path)
                if existing is None:
                    changes.append(EntityChange.create(path, entity.classifier_path, entity.content))
                elif not existing.same_as(entity):
                    changes.append(EntityChange.modify(path, entity.classifier_path, entity.content))
            if replace:
                changes.extend(EntityChange.delete(p) for p in current.paths() if p not in desired)
            if not changes:
                return None
            validate_entity_changes(changes)
            try:
                return self._commit(project_id, spec, changes, head, message, author)
            except SdlcError as e:
                raise e.annotate("update entities", project_id=project_id, workspace_id=spec.workspace_id)

    def delete_entities(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        entity_paths: Iterable[str],
        message: str = "",
        author: Optional[str] = None,
    ) -> Optional[Revision]:
        return self.perform_changes(
            project_id,
            spec,
            [EntityChange.delete(p) for p in dict.fromkeys(entity_paths)],
            message=message,
            author=author,
        )

    def delete_package(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        package_path: str,
        message: str = "",
        author: Optional[str] = None,
    ) -> Optional[Revision]:
        """Delete every entity in a package and its sub-packages."""
        if not paths.is_valid_package_path(package_path):
            raise InvalidArgumentError(f"Invalid package path: {package_path!r}")
        spec = self._check_writable(project_id, spec)
        with self._workspaces.hold(project_id, spec):
            head = self._workspaces.get_workspace(project_id, spec).head_revision_id
            snapshot = self._store.read_entities(project_id, head)
            changes = [
                EntityChange.delete(e.path)
                for e in snapshot.scan(lambda e: paths.is_in_package(e.path, package_path))
            ]
            if not changes:
                return None
            try:
                return self._commit(project_id, spec, changes, head, message, author)
            except SdlcError as e:
                raise e.annotate("delete package", project_id=project_id, workspace_id=spec.workspace_id)

    def update_project_configuration(
        self,
        project_id: str,
        spec: WorkspaceSpecification,
        configuration: dict[str, Any],
        revision_id: Optional[str] = None,
        message: str = "Update project configuration",
        author: Optional[str] = None,
    ) -> Revision:
        if not isinstance(configuration, dict):
            raise InvalidArgumentError("Project configuration must be a mapping")
        spec = self._check_writable(project_id, spec)
        with self._workspaces.hold(project_id, spec):
            try:
                return self._commit(
                    project_id, spec, [], revision_id, message, author, project_configuration=configuration
                )
            except SdlcError as e:
                raise e.annotate(
                    "update project configuration", project_id=project_id, workspace_id=spec.workspace_id
                )
