"""
Reviews: proposals to merge a workspace into its source stream.
"""

from .reviews import ReviewManager

__all__ = ["ReviewManager"]
