"""
Revision history per stream or workspace, with BASE/HEAD alias resolution.
"""

from .revisions import RevisionHistory, RevisionRef, describe_source, parse_revision_alias

__all__ = [
    "RevisionHistory",
    "RevisionRef",
    "describe_source",
    "parse_revision_alias",
]
