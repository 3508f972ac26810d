"""
Command-line tools for administering a model version-control store.

Invariants:
    - Tools work offline against the SQLite store (no running service)
    - Tools only read; they never mutate the store
"""

from .admin_cli import AdminCLI

__all__ = ["AdminCLI"]
