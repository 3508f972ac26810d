"""
Comparison of entity sets between revisions.
"""

from .comparison import ComparisonEngine, configuration_changed, diff_entities

__all__ = [
    "ComparisonEngine",
    "configuration_changed",
    "diff_entities",
]
