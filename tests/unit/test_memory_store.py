"""
Unit tests for the in-memory versioned store.

Tests cover:
- Project lifecycle
- Compare-and-swap commits
- Pointer create / rename / delete
- Write-once tags
- Review persistence
- Testing helpers (failure injection)
"""

import pytest

from sdlc.modelvcs_core.errors import (
    ConflictError,
    NotFoundError,
    StorageFailureError,
    UnavailableError,
)
from sdlc.modelvcs_core.model.types import MAIN_LINE, EntityChangeType, Project, Review, user_workspace
from sdlc.modelvcs_core.store.memory import InMemoryStore
from sdlc.modelvcs_core.streams import stream_pointer
from tests.factories import create, modify

MAIN = stream_pointer(MAIN_LINE)


class TestInMemoryStore:
    """Tests for InMemoryStore."""

    def test_requires_initialize(self):
        """Operations fail closed before initialize()."""
        store = InMemoryStore()
        assert not store.is_initialized
        with pytest.raises(UnavailableError):
            store.list_projects()

    def test_create_project_creates_root_revision(self, store):
        root = store.create_project(Project("p1", "P1"), MAIN, "admin")
        assert root.message == "Initial commit"
        assert root.parent_id is None
        pointer = store.get_pointer("p1", MAIN)
        assert pointer.revision_id == root.id
        assert pointer.base_revision_id == root.id
        assert len(store.read_entities("p1", root.id)) == 0

    def test_duplicate_project_conflicts(self, store, project_id):
        with pytest.raises(ConflictError):
            store.create_project(Project(project_id, "Again"), MAIN, "admin")

    def test_delete_project_is_idempotent(self, store, project_id):
        store.delete_project(project_id)
        store.delete_project(project_id)
        with pytest.raises(NotFoundError):
            store.get_project(project_id)

    def test_commit_advances_pointer(self, store, project_id):
        head = store.get_pointer(project_id, MAIN).revision_id
        revision = store.commit(project_id, MAIN, head, [create("model::A")], "alice", "add A")
        assert revision.parent_id == head
        assert store.get_pointer(project_id, MAIN).revision_id == revision.id
        assert store.read_entities(project_id, revision.id).paths() == ["model::A"]
        # Old snapshot is unchanged
        assert len(store.read_entities(project_id, head)) == 0

    def test_commit_is_compare_and_swap(self, store, project_id):
        """A commit based on a stale head fails and changes nothing."""
        head = store.get_pointer(project_id, MAIN).revision_id
        store.commit(project_id, MAIN, head, [create("model::A")], "alice", "add A")
        count = store.revision_count(project_id)
        with pytest.raises(ConflictError):
            store.commit(project_id, MAIN, head, [create("model::B")], "bob", "add B")
        assert store.revision_count(project_id) == count

    def test_failed_batch_creates_no_revision(self, store, project_id):
        head = store.get_pointer(project_id, MAIN).revision_id
        with pytest.raises(NotFoundError):
            store.commit(project_id, MAIN, head, [create("model::A"), modify("model::Missing")], "a", "m")
        assert store.get_pointer(project_id, MAIN).revision_id == head
        assert store.revision_count(project_id) == 1

    def test_read_entities_returns_copies(self, store, project_id):
        head = store.get_pointer(project_id, MAIN).revision_id
        revision = store.commit(project_id, MAIN, head, [create("model::A", tags=["x"])], "a", "m")
        store.read_entities(project_id, revision.id).get("model::A").content["tags"].append("y")
        assert store.read_entities(project_id, revision.id).get("model::A").content["tags"] == ["x"]

    def test_project_configuration_is_inherited(self, store, project_id):
        head = store.get_pointer(project_id, MAIN).revision_id
        r1 = store.commit(project_id, MAIN, head, [], "a", "config", project_configuration={"deps": ["x"]})
        r2 = store.commit(project_id, MAIN, r1.id, [create("model::A")], "a", "add A")
        assert store.read_project_configuration(project_id, r2.id) == {"deps": ["x"]}
        assert store.read_project_configuration(project_id, head) == {}

    def test_pointer_rename_and_replace(self, store, project_id):
        head = store.get_pointer(project_id, MAIN).revision_id
        store.create_pointer(project_id, "tmp/a", head)
        store.create_pointer(project_id, "tmp/b", head)
        with pytest.raises(ConflictError):
            store.rename_pointer(project_id, "tmp/a", "tmp/b")
        renamed = store.rename_pointer(project_id, "tmp/a", "tmp/b", replace=True)
        assert renamed.name == "tmp/b"
        assert store.get_pointer(project_id, "tmp/a") is None
        assert [p.name for p in store.list_pointers(project_id, "tmp/")] == ["tmp/b"]

    def test_delete_pointer_reports_existence(self, store, project_id):
        head = store.get_pointer(project_id, MAIN).revision_id
        store.create_pointer(project_id, "tmp/a", head)
        assert store.delete_pointer(project_id, "tmp/a") is True
        assert store.delete_pointer(project_id, "tmp/a") is False

    def test_tags_are_write_once(self, store, project_id):
        head = store.get_pointer(project_id, MAIN).revision_id
        store.create_tag(project_id, "release-1.0.0", head, "first")
        with pytest.raises(ConflictError):
            store.create_tag(project_id, "release-1.0.0", head)
        assert [t.name for t in store.list_tags(project_id, "release-")] == ["release-1.0.0"]

    def test_review_ids_are_assigned(self, store, project_id):
        review = Review(
            id="", project_id=project_id, workspace_spec=user_workspace("alice"),
            title="t", author="alice", base_revision_id="r0",
        )
        first = store.create_review(review)
        second = store.create_review(review)
        assert (first.id, second.id) == ("1", "2")
        assert [r.id for r in store.list_reviews(project_id)] == ["1", "2"]

    def test_inject_failure(self, store, project_id):
        """The next mutating call raises the injected error; later calls succeed."""
        head = store.get_pointer(project_id, MAIN).revision_id
        store.inject_failure(StorageFailureError("disk full"))
        with pytest.raises(StorageFailureError):
            store.create_pointer(project_id, "tmp/a", head)
        assert store.get_pointer(project_id, "tmp/a") is None
        store.create_pointer(project_id, "tmp/a", head)

    def test_three_way_merge(self, store, project_id):
        base = store.get_pointer(project_id, MAIN).revision_id
        store.create_pointer(project_id, "tmp/local", base)
        local = store.commit(project_id, "tmp/local", base, [create("model::A")], "a", "m")
        upstream = store.commit(project_id, MAIN, base, [create("model::B")], "b", "m")
        result = store.three_way_merge(project_id, base, local.id, upstream.id)
        assert result.is_clean
        assert [c.entity_path for c in result.changes] == ["model::A"]
        assert result.changes[0].type is EntityChangeType.CREATE
