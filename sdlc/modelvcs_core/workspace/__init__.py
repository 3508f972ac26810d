"""
Workspace lifecycle and conflict resolution.

A workspace is a mutable staging line rooted at a captured BASE revision of
its stream. Updating it onto a newer stream HEAD either replays its changes
cleanly or opens a conflict resolution with backup and resolution lines.

Invariants:
    - One primary workspace per (stream, workspace_id, type)
    - State transitions are atomic pointer swaps, serialized per workspace
"""

from .conflicts import ConflictResolutionCoordinator
from .manager import WorkspaceManager
from .transitions import publish_pointer

__all__ = [
    "ConflictResolutionCoordinator",
    "WorkspaceManager",
    "publish_pointer",
]
