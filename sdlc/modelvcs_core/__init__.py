"""
Model version control core: branch-and-merge for named model artifacts.

This package manages versioned model entities organized into projects:
- Streams (the main line and patch lines) hold committed history
- Workspaces are isolated, mutable lines branched from a stream
- Reviews squash-commit a workspace back onto its stream
- Versions are write-once release tags; patches are release lines
  branched from a version

Architecture:
    ┌──────────────┐     ┌────────────────┐     ┌──────────────────┐
    │ EntityService│────▶│WorkspaceManager│────▶│ConflictResolution│
    │ ReviewManager│     │ (state machine)│     │   Coordinator    │
    └──────┬───────┘     └───────┬────────┘     └────────┬─────────┘
           │                     │                       │
           ▼                     ▼                       ▼
    ┌─────────────────────────────────────────────────────────────┐
    │        VersionedStore (revisions, pointers, tags, reviews)  │
    └─────────────────────────────────────────────────────────────┘
           │                                             │
           ▼                                             ▼
    ┌──────────────┐                              ┌──────────────┐
    │ InMemoryStore│                              │ SqliteStore  │
    └──────────────┘                              └──────────────┘

Invariants:
    - Committed revisions are immutable
    - Every workspace transition is published by one atomic pointer rename
    - A Version, once created, never moves
    - Comparisons are pure functions of two snapshots

How to change safely:
    - New workspace transitions go through workspace.publish_pointer()
    - New store backends implement store.VersionedStore
    - Keep pointer naming in streams.py; nothing else builds pointer names
"""

from ._version import __version__

__all__ = ["__version__"]
