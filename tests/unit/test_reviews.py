"""
Unit tests for reviews.

Tests cover:
- Creation rules (title, changes, one open review per workspace)
- Edit / approve / revoke / close / reopen transitions
- Squash commit onto the stream and its preconditions
- Review comparisons and listing filters
"""

import pytest

from sdlc.modelvcs_core.compare.comparison import ComparisonEngine
from sdlc.modelvcs_core.errors import ConflictError, InvalidArgumentError, NotFoundError
from sdlc.modelvcs_core.history.revisions import RevisionHistory
from sdlc.modelvcs_core.model.types import MAIN_LINE, EntityChange, EntityDiffKind, ReviewState
from sdlc.modelvcs_core.review.reviews import ReviewManager
from sdlc.modelvcs_core.streams import workspace_pointer
from sdlc.modelvcs_core.workspace.manager import WorkspaceManager
from tests.factories import commit_to_stream, commit_to_workspace, create, modify


@pytest.fixture
def workspaces(store):
    return WorkspaceManager(store)


@pytest.fixture
def reviews(store, workspaces):
    return ReviewManager(store, workspaces, ComparisonEngine(store), default_author="system")


@pytest.fixture
def spec(store, workspaces, project_id):
    commit_to_stream(store, project_id, [create("model::Existing", v=0), create("model::Gone")])
    spec = workspaces.create_workspace(project_id, "alice").spec
    commit_to_workspace(store, project_id, spec, [create("model::A")], message="add A")
    commit_to_workspace(
        store, project_id, spec,
        [modify("model::Existing", v=1), EntityChange.delete("model::Gone")],
        message="edit",
    )
    return spec


class TestCreateReview:
    """Tests for ReviewManager.create_review."""

    def test_create_review(self, store, reviews, project_id, spec):
        review = reviews.create_review(project_id, spec, "  Add A  ", labels=["model"], author="alice")
        assert review.id == "1"
        assert review.state is ReviewState.OPEN
        assert review.title == "Add A"
        assert review.labels == ("model",)
        assert review.base_revision_id == store.get_pointer(project_id, "stream/main").revision_id
        assert reviews.get_review(project_id, "1") == review

    def test_empty_title_rejected(self, reviews, project_id, spec):
        with pytest.raises(InvalidArgumentError):
            reviews.create_review(project_id, spec, "   ")

    def test_workspace_without_changes_rejected(self, workspaces, reviews, project_id, spec):
        empty = workspaces.create_workspace(project_id, "bob").spec
        with pytest.raises(InvalidArgumentError):
            reviews.create_review(project_id, empty, "Nothing")

    def test_missing_workspace(self, reviews, project_id, spec):
        from sdlc.modelvcs_core.model.types import user_workspace

        with pytest.raises(NotFoundError):
            reviews.create_review(project_id, user_workspace("nobody"), "Title")

    def test_one_open_review_per_workspace(self, reviews, project_id, spec):
        first = reviews.create_review(project_id, spec, "First")
        with pytest.raises(ConflictError):
            reviews.create_review(project_id, spec, "Second")
        reviews.close_review(project_id, first.id)
        assert reviews.create_review(project_id, spec, "Second").id == "2"


class TestReviewTransitions:
    """Tests for edit, approvals, close and reopen."""

    @pytest.fixture
    def review(self, reviews, project_id, spec):
        return reviews.create_review(project_id, spec, "Add A")

    def test_edit(self, reviews, project_id, review):
        edited = reviews.edit_review(project_id, review.id, title="Better", description="details")
        assert (edited.title, edited.description) == ("Better", "details")
        assert edited.labels == review.labels
        assert edited.last_updated_at >= review.created_at
        with pytest.raises(InvalidArgumentError):
            reviews.edit_review(project_id, review.id, title="")

    def test_approve_and_revoke(self, reviews, project_id, review):
        reviews.approve_review(project_id, review.id, "bob")
        approved = reviews.approve_review(project_id, review.id, "bob")
        assert approved.approvals == ("bob",)
        assert reviews.revoke_approval(project_id, review.id, "bob").approvals == ()
        assert reviews.revoke_approval(project_id, review.id, "carol").approvals == ()

    def test_close_and_reopen(self, reviews, project_id, review):
        closed = reviews.close_review(project_id, review.id)
        assert closed.state is ReviewState.CLOSED
        assert closed.closed_at is not None
        with pytest.raises(ConflictError):
            reviews.approve_review(project_id, review.id, "bob")
        with pytest.raises(ConflictError):
            reviews.close_review(project_id, review.id)
        reopened = reviews.reopen_review(project_id, review.id)
        assert reopened.state is ReviewState.OPEN
        assert reopened.closed_at is None

    def test_reopen_requires_closed(self, reviews, project_id, review):
        with pytest.raises(ConflictError):
            reviews.reopen_review(project_id, review.id)

    def test_reopen_blocked_by_other_open_review(self, reviews, project_id, spec, review):
        reviews.close_review(project_id, review.id)
        reviews.create_review(project_id, spec, "Replacement")
        with pytest.raises(ConflictError):
            reviews.reopen_review(project_id, review.id)

    def test_reopen_requires_workspace(self, workspaces, reviews, project_id, spec, review):
        reviews.close_review(project_id, review.id)
        workspaces.delete_workspace(project_id, spec)
        with pytest.raises(NotFoundError):
            reviews.reopen_review(project_id, review.id)

    def test_unknown_review(self, reviews, project_id):
        with pytest.raises(NotFoundError):
            reviews.get_review(project_id, "42")


class TestCommitReview:
    """Tests for ReviewManager.commit_review."""

    @pytest.fixture
    def review(self, reviews, project_id, spec):
        return reviews.create_review(project_id, spec, "Add A", author="alice")

    def test_commit_squashes_onto_stream(self, store, workspaces, reviews, project_id, spec, review):
        before = store.revision_count(project_id)
        committed = reviews.commit_review(project_id, review.id)
        assert committed.state is ReviewState.COMMITTED
        assert committed.committed_at is not None

        head = RevisionHistory(store, project_id, MAIN_LINE).get_current_revision()
        assert committed.commit_revision_id == head.id
        assert head.author_name == "alice"
        assert head.message == "Add A (review 1)"
        # One squashed revision, not the two workspace revisions
        assert store.revision_count(project_id) == before + 1
        snapshot = store.read_entities(project_id, head.id)
        assert snapshot.paths() == ["model::A", "model::Existing"]
        assert snapshot.get("model::Existing").content["v"] == 1
        # The workspace is gone
        with pytest.raises(NotFoundError):
            workspaces.get_workspace(project_id, spec)

    def test_committed_review_is_terminal(self, reviews, project_id, review):
        reviews.commit_review(project_id, review.id)
        for action in (reviews.close_review, reviews.reopen_review, reviews.commit_review):
            with pytest.raises(ConflictError):
                action(project_id, review.id)

    def test_outdated_workspace_cannot_commit(self, store, workspaces, reviews, project_id, spec, review):
        commit_to_stream(store, project_id, [create("model::Upstream")])
        with pytest.raises(ConflictError):
            reviews.commit_review(project_id, review.id)
        assert reviews.get_review(project_id, review.id).state is ReviewState.OPEN
        workspaces.update(project_id, spec)
        committed = reviews.commit_review(project_id, review.id)
        assert "model::Upstream" in store.read_entities(project_id, committed.commit_revision_id)

    def test_workspace_in_conflict_resolution_cannot_commit(self, store, workspaces, reviews, project_id, spec,
                                                           review):
        commit_to_stream(store, project_id, [modify("model::Existing", v=5)])
        workspaces.update(project_id, spec)
        with pytest.raises(ConflictError):
            reviews.commit_review(project_id, review.id)

    def test_commit_carries_project_configuration(self, store, reviews, project_id, spec, review):
        pointer = store.get_pointer(project_id, workspace_pointer(spec))
        store.commit(project_id, pointer.name, pointer.revision_id, [], "alice", "config",
                     project_configuration={"groupId": "org.demo"})
        committed = reviews.commit_review(project_id, review.id)
        assert store.read_project_configuration(project_id, committed.commit_revision_id) == {"groupId": "org.demo"}


class TestReviewQueries:
    """Tests for comparisons and listing filters."""

    def test_review_comparisons(self, store, reviews, project_id, spec):
        review = reviews.create_review(project_id, spec, "Add A")
        comparison = reviews.get_review_comparison(project_id, review.id)
        assert comparison.paths(EntityDiffKind.ADDED) == {"model::A"}
        assert comparison.paths(EntityDiffKind.DELETED) == {"model::Gone"}
        assert comparison.paths(EntityDiffKind.MODIFIED) == {"model::Existing"}
        creation = reviews.get_review_workspace_creation_comparison(project_id, review.id)
        assert creation == comparison

        committed = reviews.commit_review(project_id, review.id)
        after = reviews.get_review_comparison(project_id, committed.id)
        assert after.to_revision_id == committed.commit_revision_id
        assert after.paths() == comparison.paths()

    def test_get_reviews_filters(self, store, workspaces, reviews, project_id, spec):
        first = reviews.create_review(project_id, spec, "Alice")
        bob = workspaces.create_workspace(project_id, "bob").spec
        commit_to_workspace(store, project_id, bob, [create("model::B")])
        second = reviews.create_review(project_id, bob, "Bob")
        reviews.close_review(project_id, second.id)

        assert [r.id for r in reviews.get_reviews(project_id)] == [first.id, second.id]
        assert [r.id for r in reviews.get_reviews(project_id, state=ReviewState.OPEN)] == [first.id]
        assert [r.id for r in reviews.get_reviews(project_id, workspace_id="bob")] == [second.id]
        assert [r.id for r in reviews.get_reviews(project_id, stream=MAIN_LINE, limit=1)] == [first.id]
        window = reviews.get_reviews(project_id, since=second.created_at, until=second.created_at)
        assert second.id in [r.id for r in window]

    def test_invalid_filters(self, reviews, project_id):
        with pytest.raises(InvalidArgumentError):
            reviews.get_reviews(project_id, limit=-1)
