"""
Release management: write-once versions and patch release lines.
"""

from .patches import PatchManager
from .versions import VersionManager

__all__ = [
    "PatchManager",
    "VersionManager",
]
