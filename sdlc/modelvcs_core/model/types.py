"""
Core value types for the model version-control system.

This module defines the data model shared by every component:
- Entity / EntityChange: model artifacts and the edits applied to them
- Revision: an immutable committed snapshot header
- MainLine / PatchStream: the two kinds of development stream
- WorkspaceSpecification: one value covering (id, type, access type, source)
- Version, Patch, Project, Review: release and collaboration records
- Comparison / EntityDiff / EntityConflict: computed, never persisted

Invariants:
    - All records are frozen; state changes produce new values
    - Entity paths are unique within a revision snapshot
    - DevelopmentStream is closed: MainLine or PatchStream, nothing else

How to change safely:
    - New stream kinds must be added to every match_stream() call site
    - Add new record fields with defaults so stored data keeps loading
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, TypeVar, Union

from .version_id import VersionId, parse_version_id


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Entities
# =============================================================================


@dataclass(frozen=True)
class Entity:
    """A named, classified model artifact.

    Attributes:
        path: ``::``-separated identifier, unique within a snapshot
        classifier_path: Artifact type (``meta::...``)
        content: Opaque structured document
    """

    path: str
    classifier_path: str
    content: dict[str, Any] = field(default_factory=dict, hash=False)

    def same_as(self, other: Optional[Entity]) -> bool:
        """Whole-entity equality used by comparison and merge."""
        return (
            other is not None
            and self.classifier_path == other.classifier_path
            and self.content == other.content
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "classifierPath": self.classifier_path,
            "content": copy.deepcopy(self.content),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        return cls(
            path=data["path"],
            classifier_path=data["classifierPath"],
            content=copy.deepcopy(data.get("content") or {}),
        )


def same_entity(a: Optional[Entity], b: Optional[Entity]) -> bool:
    """Whether two optional entities are identical (both absent counts)."""
    if a is None or b is None:
        return a is None and b is None
    return a.same_as(b)


class EntityChangeType(Enum):
    CREATE = "CREATE"
    DELETE = "DELETE"
    MODIFY = "MODIFY"
    RENAME = "RENAME"


@dataclass(frozen=True)
class EntityChange:
    """A single edit within a commit batch.

    Use the ``create``/``modify``/``delete``/``rename`` constructors rather
    than filling the fields by hand.
    """

    type: EntityChangeType
    entity_path: str
    classifier_path: Optional[str] = None
    content: Optional[dict[str, Any]] = field(default=None, hash=False)
    new_entity_path: Optional[str] = None

    @classmethod
    def create(cls, path: str, classifier_path: str, content: dict[str, Any]) -> EntityChange:
        return cls(EntityChangeType.CREATE, path, classifier_path, content)

    @classmethod
    def modify(cls, path: str, classifier_path: str, content: dict[str, Any]) -> EntityChange:
        return cls(EntityChangeType.MODIFY, path, classifier_path, content)

    @classmethod
    def delete(cls, path: str) -> EntityChange:
        return cls(EntityChangeType.DELETE, path)

    @classmethod
    def rename(cls, path: str, new_path: str) -> EntityChange:
        return cls(EntityChangeType.RENAME, path, new_entity_path=new_path)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value, "entityPath": self.entity_path}
        if self.classifier_path is not None:
            data["classifierPath"] = self.classifier_path
        if self.content is not None:
            data["content"] = copy.deepcopy(self.content)
        if self.new_entity_path is not None:
            data["newEntityPath"] = self.new_entity_path
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityChange:
        return cls(
            type=EntityChangeType(data["type"]),
            entity_path=data["entityPath"],
            classifier_path=data.get("classifierPath"),
            content=copy.deepcopy(data.get("content")),
            new_entity_path=data.get("newEntityPath"),
        )


# =============================================================================
# Revisions
# =============================================================================


@dataclass(frozen=True)
class Revision:
    """Immutable header of a committed snapshot.

    ``parent_id`` links a revision to the one it was committed on top of;
    the root revision of a project has none.
    """

    id: str
    author_name: str
    authored_at: datetime
    committer_name: str
    committed_at: datetime
    message: str
    parent_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "authorName": self.author_name,
            "authoredTimestamp": self.authored_at.isoformat(),
            "committerName": self.committer_name,
            "committedTimestamp": self.committed_at.isoformat(),
            "message": self.message,
        }


class RevisionAlias(Enum):
    """Symbolic revision reference resolved against one history line."""

    BASE = "BASE"
    HEAD = "HEAD"
    REVISION_ID = "REVISION_ID"


# =============================================================================
# Streams and workspaces
# =============================================================================


@dataclass(frozen=True)
class MainLine:
    """The project main line."""

    def __str__(self) -> str:
        return "main"


MAIN_LINE = MainLine()


@dataclass(frozen=True)
class PatchStream:
    """An independent release line that will produce ``version_id``."""

    version_id: VersionId

    def __str__(self) -> str:
        return f"patch {self.version_id}"


DevelopmentStream = Union[MainLine, PatchStream]

R = TypeVar("R")


def match_stream(
    stream: DevelopmentStream,
    main_line: Callable[[], R],
    patch: Callable[[VersionId], R],
) -> R:
    """Exhaustive dispatch over the closed stream union."""
    if isinstance(stream, MainLine):
        return main_line()
    if isinstance(stream, PatchStream):
        return patch(stream.version_id)
    raise TypeError(f"Unknown development stream: {stream!r}")


def patch_stream(version: Union[VersionId, str]) -> PatchStream:
    """Build a patch stream from a VersionId or its string form."""
    if isinstance(version, str):
        version = parse_version_id(version)
    return PatchStream(version)


class WorkspaceType(Enum):
    USER = "USER"
    GROUP = "GROUP"


class WorkspaceAccessType(Enum):
    WORKSPACE = "WORKSPACE"
    BACKUP = "BACKUP"
    CONFLICT_RESOLUTION = "CONFLICT_RESOLUTION"


class WorkspaceState(Enum):
    ACTIVE = "ACTIVE"
    IN_CONFLICT_RESOLUTION = "IN_CONFLICT_RESOLUTION"
    BACKED_UP = "BACKED_UP"
    DELETED = "DELETED"


@dataclass(frozen=True)
class WorkspaceSpecification:
    """Identifies one workspace line.

    The primary workspace and its backup / conflict-resolution shadows share
    ``(workspace_id, type, source)`` and differ only by ``access_type``.
    """

    workspace_id: str
    type: WorkspaceType = WorkspaceType.USER
    access_type: WorkspaceAccessType = WorkspaceAccessType.WORKSPACE
    source: DevelopmentStream = MAIN_LINE

    def with_access_type(self, access_type: WorkspaceAccessType) -> WorkspaceSpecification:
        return replace(self, access_type=access_type)

    @property
    def primary(self) -> WorkspaceSpecification:
        return self.with_access_type(WorkspaceAccessType.WORKSPACE)

    @property
    def backup(self) -> WorkspaceSpecification:
        return self.with_access_type(WorkspaceAccessType.BACKUP)

    @property
    def conflict_resolution(self) -> WorkspaceSpecification:
        return self.with_access_type(WorkspaceAccessType.CONFLICT_RESOLUTION)

    @property
    def key(self) -> tuple:
        """Serialization key shared by all access types of one workspace."""
        return (self.source, self.workspace_id, self.type)

    def __str__(self) -> str:
        label = f"{self.type.value.lower()} workspace {self.workspace_id}"
        if self.access_type is not WorkspaceAccessType.WORKSPACE:
            label = f"{self.access_type.value.lower()} {label}"
        if isinstance(self.source, PatchStream):
            label += f" ({self.source})"
        return label


def user_workspace(workspace_id: str, source: DevelopmentStream = MAIN_LINE) -> WorkspaceSpecification:
    return WorkspaceSpecification(workspace_id, WorkspaceType.USER, source=source)


def group_workspace(workspace_id: str, source: DevelopmentStream = MAIN_LINE) -> WorkspaceSpecification:
    return WorkspaceSpecification(workspace_id, WorkspaceType.GROUP, source=source)


SourceSpecification = Union[MainLine, PatchStream, WorkspaceSpecification]


@dataclass(frozen=True)
class Workspace:
    """A workspace as seen by callers: its spec plus its current pointers."""

    project_id: str
    spec: WorkspaceSpecification
    base_revision_id: str
    head_revision_id: str
    created_at: datetime

    @property
    def workspace_id(self) -> str:
        return self.spec.workspace_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "workspaceId": self.spec.workspace_id,
            "type": self.spec.type.value,
            "accessType": self.spec.access_type.value,
            "source": str(self.spec.source),
            "baseRevisionId": self.base_revision_id,
            "headRevisionId": self.head_revision_id,
        }


# =============================================================================
# Projects, versions, patches
# =============================================================================


@dataclass(frozen=True)
class Project:
    project_id: str
    name: str
    description: str = ""
    tags: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class Version:
    """A write-once release tag bound to a revision."""

    id: VersionId
    project_id: str
    revision_id: str
    notes: str = ""
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "projectId": self.project_id,
            "revisionId": self.revision_id,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Patch:
    """A patch release line.

    Attributes:
        project_id: Owning project
        version_id: The release this patch will produce
        source_version_id: The version the patch was branched from
        released: Whether a Version with ``version_id`` exists
    """

    project_id: str
    version_id: VersionId
    source_version_id: Optional[VersionId] = None
    released: bool = False

    @property
    def stream(self) -> PatchStream:
        return PatchStream(self.version_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "patchReleaseVersionId": str(self.version_id),
            "sourceVersionId": str(self.source_version_id) if self.source_version_id else None,
            "released": self.released,
        }


# =============================================================================
# Comparison and merge results
# =============================================================================


class EntityDiffKind(Enum):
    ADDED = "ADDED"
    DELETED = "DELETED"
    MODIFIED = "MODIFIED"


@dataclass(frozen=True)
class EntityDiff:
    path: str
    kind: EntityDiffKind

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "kind": self.kind.value}


@dataclass(frozen=True)
class Comparison:
    from_revision_id: str
    to_revision_id: str
    entity_diffs: tuple[EntityDiff, ...] = ()
    project_configuration_updated: bool = False

    def paths(self, kind: Optional[EntityDiffKind] = None) -> set[str]:
        return {d.path for d in self.entity_diffs if kind is None or d.kind is kind}

    def to_dict(self) -> dict[str, Any]:
        return {
            "fromRevisionId": self.from_revision_id,
            "toRevisionId": self.to_revision_id,
            "entityDiffs": [d.to_dict() for d in self.entity_diffs],
            "projectConfigurationUpdated": self.project_configuration_updated,
        }


@dataclass(frozen=True)
class EntityConflict:
    """One conflicting path with the three per-side contents (None = absent)."""

    path: str
    base: Optional[Entity] = None
    local: Optional[Entity] = None
    upstream: Optional[Entity] = None


class WorkspaceUpdateStatus(Enum):
    NO_OP = "NO_OP"
    UPDATED = "UPDATED"
    CONFLICT = "CONFLICT"


@dataclass(frozen=True)
class WorkspaceUpdateReport:
    status: WorkspaceUpdateStatus
    merge_base_revision_id: Optional[str]
    revision_id: Optional[str]
    conflicts: tuple[EntityConflict, ...] = ()

    @property
    def conflict_paths(self) -> set[str]:
        return {c.path for c in self.conflicts}


# =============================================================================
# Reviews
# =============================================================================


class ReviewState(Enum):
    OPEN = "OPEN"
    COMMITTED = "COMMITTED"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class Review:
    """A proposal to merge a workspace's HEAD into its source stream.

    ``base_revision_id`` is the stream HEAD at review creation and
    ``commit_revision_id`` the stream revision produced by commit_review.
    """

    id: str
    project_id: str
    workspace_spec: WorkspaceSpecification
    title: str
    author: str
    base_revision_id: str
    description: str = ""
    labels: tuple[str, ...] = ()
    state: ReviewState = ReviewState.OPEN
    approvals: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    last_updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    committed_at: Optional[datetime] = None
    commit_revision_id: Optional[str] = None

    @property
    def workspace_id(self) -> str:
        return self.workspace_spec.workspace_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "workspaceId": self.workspace_spec.workspace_id,
            "workspaceType": self.workspace_spec.type.value,
            "title": self.title,
            "description": self.description,
            "labels": list(self.labels),
            "author": self.author,
            "state": self.state.value,
            "approvals": list(self.approvals),
            "commitRevisionId": self.commit_revision_id,
        }
