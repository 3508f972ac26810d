"""
Unit tests for the comparison engine.

Tests cover:
- ADDED / DELETED / MODIFIED classification
- Swapping the arguments inverts the diff
- Project configuration change signal
- Workspace creation and source comparisons
"""

import pytest

from sdlc.modelvcs_core.compare.comparison import ComparisonEngine, diff_entities
from sdlc.modelvcs_core.model.types import MAIN_LINE, EntityChange, EntityDiffKind
from sdlc.modelvcs_core.workspace.manager import WorkspaceManager
from tests.factories import class_entity, commit_to_stream, commit_to_workspace, create, modify

INVERSE = {
    EntityDiffKind.ADDED: EntityDiffKind.DELETED,
    EntityDiffKind.DELETED: EntityDiffKind.ADDED,
    EntityDiffKind.MODIFIED: EntityDiffKind.MODIFIED,
}


class TestDiffEntities:
    """Tests for the pure diff function."""

    def test_classification(self):
        old = {"m::A": class_entity("m::A"), "m::B": class_entity("m::B", v=1), "m::C": class_entity("m::C")}
        new = {"m::B": class_entity("m::B", v=2), "m::C": class_entity("m::C"), "m::D": class_entity("m::D")}
        diffs = {d.path: d.kind for d in diff_entities(old, new)}
        assert diffs == {
            "m::A": EntityDiffKind.DELETED,
            "m::B": EntityDiffKind.MODIFIED,
            "m::D": EntityDiffKind.ADDED,
        }

    def test_identical_inputs_have_no_diffs(self):
        entities = {"m::A": class_entity("m::A")}
        assert diff_entities(entities, dict(entities)) == []


class TestComparisonEngine:
    """Tests for ComparisonEngine against a store."""

    @pytest.fixture
    def engine(self, store):
        return ComparisonEngine(store)

    @pytest.fixture
    def revisions(self, store, project_id):
        r1 = commit_to_stream(store, project_id, [create("model::A"), create("model::B", v=1)])
        r2 = commit_to_stream(
            store, project_id, [EntityChange.delete("model::A"), modify("model::B", v=2), create("model::C")]
        )
        return r1, r2

    def test_compare_revisions(self, engine, project_id, revisions):
        r1, r2 = revisions
        comparison = engine.compare_revisions(project_id, r1.id, r2.id)
        assert comparison.paths(EntityDiffKind.ADDED) == {"model::C"}
        assert comparison.paths(EntityDiffKind.DELETED) == {"model::A"}
        assert comparison.paths(EntityDiffKind.MODIFIED) == {"model::B"}
        assert not comparison.project_configuration_updated

    def test_swapping_arguments_inverts_kinds(self, engine, project_id, revisions):
        r1, r2 = revisions
        forward = {d.path: d.kind for d in engine.compare_revisions(project_id, r1.id, r2.id).entity_diffs}
        backward = {d.path: d.kind for d in engine.compare_revisions(project_id, r2.id, r1.id).entity_diffs}
        assert backward == {path: INVERSE[kind] for path, kind in forward.items()}

    def test_comparison_is_deterministic(self, engine, project_id, revisions):
        r1, r2 = revisions
        assert engine.compare_revisions(project_id, r1.id, r2.id) == engine.compare_revisions(
            project_id, r1.id, r2.id
        )

    def test_configuration_change_is_flagged(self, store, engine, project_id, revisions):
        _, r2 = revisions
        r3 = store.commit(project_id, "stream/main", r2.id, [], "a", "config",
                          project_configuration={"dependencies": ["lib:1.0.0"]})
        comparison = engine.compare_revisions(project_id, r2.id, r3.id)
        assert comparison.project_configuration_updated
        assert comparison.entity_diffs == ()

    def test_compare_resolves_aliases_on_line(self, engine, project_id, revisions):
        r1, r2 = revisions
        comparison = engine.compare(project_id, MAIN_LINE, r1.id, "HEAD")
        assert comparison.to_revision_id == r2.id

    def test_workspace_comparisons(self, store, engine, project_id, revisions):
        spec = WorkspaceManager(store).create_workspace(project_id, "alice").spec
        commit_to_workspace(store, project_id, spec, [create("model::D")])
        creation = engine.get_workspace_creation_comparison(project_id, spec)
        assert creation.paths() == {"model::D"}

        commit_to_stream(store, project_id, [create("model::E")])
        source = engine.get_workspace_source_comparison(project_id, spec)
        assert source.paths(EntityDiffKind.ADDED) == {"model::D"}
        assert source.paths(EntityDiffKind.DELETED) == {"model::E"}

    def test_to_dict(self, engine, project_id, revisions):
        r1, r2 = revisions
        data = engine.compare_revisions(project_id, r1.id, r2.id).to_dict()
        assert data["fromRevisionId"] == r1.id
        assert {"path": "model::C", "kind": "ADDED"} in data["entityDiffs"]
