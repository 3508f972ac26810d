"""
Model version control test suite.

This package contains:
- unit/: Unit tests against the in-memory store
- integration/: Integration tests (SQLite store, service wiring, admin CLI)
"""
