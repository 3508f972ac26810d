"""
Pointer and tag naming for streams, workspaces and versions.

Every history line is a store pointer; its name encodes what it is:

    stream/main                                   main line
    stream/patch/1.0.1                            patch stream producing 1.0.1
    workspace/main/user/workspace/alice           primary user workspace
    workspace/patch-1.0.1/group/backup/team       backup of a group workspace
    workspace/main/user/conflict-resolution/bob   conflict-resolution shadow
    tmp/<uuid>                                    scratch pointer for transitions

Versions are store tags named ``release-<major>.<minor>.<patch>``.

Invariants:
    - Parsing a name produced here returns the same specification
    - Workspace ids contain only letters, digits, ``_``, ``.`` and ``-``
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

from .errors import InvalidArgumentError
from .model.types import (
    MAIN_LINE,
    DevelopmentStream,
    PatchStream,
    SourceSpecification,
    WorkspaceAccessType,
    WorkspaceSpecification,
    WorkspaceType,
    match_stream,
)
from .model.version_id import VersionId, try_parse_version_id

STREAM_PREFIX = "stream/"
PATCH_STREAM_PREFIX = "stream/patch/"
WORKSPACE_PREFIX = "workspace/"
TEMPORARY_PREFIX = "tmp/"
VERSION_TAG_PREFIX = "release-"

_WORKSPACE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")

_ACCESS_SEGMENTS = {
    WorkspaceAccessType.WORKSPACE: "workspace",
    WorkspaceAccessType.BACKUP: "backup",
    WorkspaceAccessType.CONFLICT_RESOLUTION: "conflict-resolution",
}
_ACCESS_BY_SEGMENT = {v: k for k, v in _ACCESS_SEGMENTS.items()}


def validate_workspace_id(workspace_id: str) -> None:
    if not isinstance(workspace_id, str) or not _WORKSPACE_ID_PATTERN.match(workspace_id):
        raise InvalidArgumentError(f"Invalid workspace id: {workspace_id!r}")


def stream_pointer(stream: DevelopmentStream) -> str:
    return match_stream(
        stream,
        lambda: STREAM_PREFIX + "main",
        lambda version_id: PATCH_STREAM_PREFIX + str(version_id),
    )


def parse_patch_pointer(name: str) -> Optional[VersionId]:
    if not name.startswith(PATCH_STREAM_PREFIX):
        return None
    return try_parse_version_id(name[len(PATCH_STREAM_PREFIX):])


def _stream_segment(stream: DevelopmentStream) -> str:
    return match_stream(stream, lambda: "main", lambda version_id: f"patch-{version_id}")


def _parse_stream_segment(segment: str) -> Optional[DevelopmentStream]:
    if segment == "main":
        return MAIN_LINE
    if segment.startswith("patch-"):
        version_id = try_parse_version_id(segment[len("patch-"):])
        return PatchStream(version_id) if version_id is not None else None
    return None


def workspace_prefix(
    stream: DevelopmentStream,
    workspace_type: Optional[WorkspaceType] = None,
    access_type: Optional[WorkspaceAccessType] = None,
) -> str:
    """Pointer-name prefix for listing workspaces of one stream.

    ``access_type`` is only honoured together with ``workspace_type``.
    """
    prefix = f"{WORKSPACE_PREFIX}{_stream_segment(stream)}/"
    if workspace_type is not None:
        prefix += f"{workspace_type.value.lower()}/"
        if access_type is not None:
            prefix += f"{_ACCESS_SEGMENTS[access_type]}/"
    return prefix


def workspace_pointer(spec: WorkspaceSpecification) -> str:
    validate_workspace_id(spec.workspace_id)
    return workspace_prefix(spec.source, spec.type, spec.access_type) + spec.workspace_id


def parse_workspace_pointer(name: str) -> Optional[WorkspaceSpecification]:
    """Reverse of workspace_pointer(); None for names that are not workspaces."""
    if not name.startswith(WORKSPACE_PREFIX):
        return None
    parts = name[len(WORKSPACE_PREFIX):].split("/")
    if len(parts) != 4:
        return None
    stream_segment, type_segment, access_segment, workspace_id = parts
    stream = _parse_stream_segment(stream_segment)
    access_type = _ACCESS_BY_SEGMENT.get(access_segment)
    try:
        workspace_type = WorkspaceType(type_segment.upper())
    except ValueError:
        return None
    if stream is None or access_type is None or not _WORKSPACE_ID_PATTERN.match(workspace_id):
        return None
    return WorkspaceSpecification(workspace_id, workspace_type, access_type, stream)


def source_pointer(source: SourceSpecification) -> str:
    """Pointer name for a stream or a workspace specification."""
    if isinstance(source, WorkspaceSpecification):
        return workspace_pointer(source)
    return stream_pointer(source)


def temporary_pointer() -> str:
    return TEMPORARY_PREFIX + uuid.uuid4().hex


def version_tag(version_id: VersionId) -> str:
    return VERSION_TAG_PREFIX + str(version_id)


def parse_version_tag(name: str) -> Optional[VersionId]:
    if not name.startswith(VERSION_TAG_PREFIX):
        return None
    return try_parse_version_id(name[len(VERSION_TAG_PREFIX):])
