"""
Shared fixtures: an explicitly constructed in-memory store per test.
"""

import pytest

from sdlc.modelvcs_core.model.types import MAIN_LINE, Project
from sdlc.modelvcs_core.store.memory import InMemoryStore
from sdlc.modelvcs_core.streams import stream_pointer


@pytest.fixture
def store():
    """Create a fresh, initialized in-memory store."""
    store = InMemoryStore()
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def project_id(store):
    """Create project "demo" with an empty main line."""
    store.create_project(Project("demo", "Demo"), stream_pointer(MAIN_LINE), "admin")
    return "demo"
