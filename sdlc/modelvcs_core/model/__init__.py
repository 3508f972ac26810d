"""
Data model for the version-control core.

Pure values and functions only: path grammar, version ids, records and the
whole-entity three-way merge. Nothing in this package touches storage.
"""

from . import paths
from .merge import MergeResult, change_to, changes_between, merge_configuration, three_way_merge
from .types import (
    MAIN_LINE,
    Comparison,
    DevelopmentStream,
    Entity,
    EntityChange,
    EntityChangeType,
    EntityConflict,
    EntityDiff,
    EntityDiffKind,
    MainLine,
    Patch,
    PatchStream,
    Project,
    Review,
    ReviewState,
    Revision,
    RevisionAlias,
    SourceSpecification,
    Version,
    Workspace,
    WorkspaceAccessType,
    WorkspaceSpecification,
    WorkspaceState,
    WorkspaceType,
    WorkspaceUpdateReport,
    WorkspaceUpdateStatus,
    group_workspace,
    match_stream,
    patch_stream,
    same_entity,
    user_workspace,
    utc_now,
)
from .version_id import (
    UNBOUNDED,
    VersionBounds,
    VersionId,
    VersionType,
    parse_version_id,
    try_parse_version_id,
)

__all__ = [
    "paths",
    # Merge
    "MergeResult",
    "change_to",
    "changes_between",
    "merge_configuration",
    "three_way_merge",
    # Types
    "MAIN_LINE",
    "Comparison",
    "DevelopmentStream",
    "Entity",
    "EntityChange",
    "EntityChangeType",
    "EntityConflict",
    "EntityDiff",
    "EntityDiffKind",
    "MainLine",
    "Patch",
    "PatchStream",
    "Project",
    "Review",
    "ReviewState",
    "Revision",
    "RevisionAlias",
    "SourceSpecification",
    "Version",
    "Workspace",
    "WorkspaceAccessType",
    "WorkspaceSpecification",
    "WorkspaceState",
    "WorkspaceType",
    "WorkspaceUpdateReport",
    "WorkspaceUpdateStatus",
    "group_workspace",
    "match_stream",
    "patch_stream",
    "same_entity",
    "user_workspace",
    "utc_now",
    # Versions
    "UNBOUNDED",
    "VersionBounds",
    "VersionId",
    "VersionType",
    "parse_version_id",
    "try_parse_version_id",
]
