"""
Unit tests for entity reads and workspace writes.

Tests cover:
- Reads with package / classifier filters at any revision
- Batched changes, compare-and-swap on the workspace HEAD
- Write access rules per workspace line
- update_entities, delete_entities, delete_package
- Project configuration updates
"""

import pytest

from sdlc.modelvcs_core.entities import EntityService
from sdlc.modelvcs_core.errors import ConflictError, InvalidArgumentError, NotFoundError
from sdlc.modelvcs_core.model.types import MAIN_LINE, Entity, EntityChange
from sdlc.modelvcs_core.workspace.manager import WorkspaceManager
from tests.factories import ENUMERATION, class_content, class_entity, commit_to_stream, create, modify


@pytest.fixture
def workspaces(store):
    return WorkspaceManager(store)


@pytest.fixture
def service(store, workspaces):
    return EntityService(store, workspaces, default_author="tester")


@pytest.fixture
def spec(workspaces, project_id):
    return workspaces.create_workspace(project_id, "alice").spec


class TestEntityReads:
    """Tests for get_entities and friends."""

    @pytest.fixture
    def populated(self, service, project_id, spec):
        return service.perform_changes(project_id, spec, [
            create("model::domain::Person"),
            create("model::domain::sub::Address"),
            create("model::Top"),
            EntityChange.create("other::Color", ENUMERATION, class_content("other::Color")),
        ])

    def test_all_entities_sorted(self, service, project_id, spec, populated):
        assert service.get_entity_paths(project_id, spec) == [
            "model::Top", "model::domain::Person", "model::domain::sub::Address", "other::Color",
        ]

    def test_package_filter(self, service, project_id, spec, populated):
        assert service.get_entity_paths(project_id, spec, package_paths=["model::domain"]) == [
            "model::domain::Person", "model::domain::sub::Address",
        ]
        assert service.get_entity_paths(
            project_id, spec, package_paths=["model::domain"], include_sub_packages=False
        ) == ["model::domain::Person"]

    def test_classifier_filter(self, service, project_id, spec, populated):
        assert service.get_entity_paths(project_id, spec, classifier_paths=[ENUMERATION]) == ["other::Color"]

    def test_packages(self, service, project_id, spec, populated):
        assert service.get_packages(project_id, spec) == ["model", "model::domain", "model::domain::sub", "other"]

    def test_read_at_base(self, service, project_id, spec, populated):
        assert service.get_entities(project_id, spec, "BASE") == []
        assert service.get_entities(project_id, spec, populated.id)

    def test_get_entity(self, service, project_id, spec, populated):
        assert service.get_entity(project_id, spec, "model::Top").path == "model::Top"
        with pytest.raises(NotFoundError):
            service.get_entity(project_id, spec, "model::Missing")

    def test_unknown_project(self, service):
        with pytest.raises(NotFoundError):
            service.get_entities("nope", MAIN_LINE)

    def test_revision_context_uses_page_limit(self, store, workspaces, project_id, spec):
        service = EntityService(store, workspaces, revision_page_limit=1)
        service.perform_changes(project_id, spec, [create("model::A")])
        service.perform_changes(project_id, spec, [create("model::B")])
        assert len(list(service.get_revision_context(project_id, spec).get_revisions())) == 1


class TestEntityWrites:
    """Tests for perform_changes and write access."""

    def test_perform_changes_creates_one_revision(self, store, service, project_id, spec):
        revision = service.perform_changes(
            project_id, spec, [create("model::A"), create("model::B")], message="two", author="alice"
        )
        assert revision.author_name == "alice"
        assert revision.message == "two"
        assert store.read_entities(project_id, revision.id).paths() == ["model::A", "model::B"]

    def test_default_author(self, service, project_id, spec):
        assert service.perform_changes(project_id, spec, [create("model::A")]).author_name == "tester"

    def test_empty_batch_is_noop(self, service, project_id, spec):
        assert service.perform_changes(project_id, spec, []) is None

    def test_invalid_batch_reports_every_error(self, store, service, project_id, spec):
        with pytest.raises(InvalidArgumentError) as exc:
            service.perform_changes(project_id, spec, [
                EntityChange.create("bad", "x", {}),
                EntityChange.delete("also bad"),
            ])
        assert len(exc.value.errors) >= 2

    def test_failed_batch_writes_nothing(self, store, service, workspaces, project_id, spec):
        head = workspaces.get_workspace(project_id, spec).head_revision_id
        with pytest.raises(NotFoundError):
            service.perform_changes(project_id, spec, [create("model::A"), modify("model::Missing")])
        assert workspaces.get_workspace(project_id, spec).head_revision_id == head

    def test_create_existing_path_conflicts(self, service, project_id, spec):
        service.perform_changes(project_id, spec, [create("model::A")])
        with pytest.raises(ConflictError):
            service.perform_changes(project_id, spec, [create("model::A")])

    def test_stale_revision_id_conflicts(self, service, project_id, spec):
        first = service.perform_changes(project_id, spec, [create("model::A")])
        service.perform_changes(project_id, spec, [create("model::B")], revision_id=first.id)
        with pytest.raises(ConflictError) as exc:
            service.perform_changes(project_id, spec, [create("model::C")], revision_id=first.id)
        assert exc.value.details["expected_revision_id"] == first.id
        assert exc.value.details["operation"] == "perform changes"

    def test_streams_are_not_writable(self, service, project_id):
        with pytest.raises(InvalidArgumentError):
            service.perform_changes(project_id, MAIN_LINE, [create("model::A")])

    def test_missing_workspace(self, service, project_id):
        from sdlc.modelvcs_core.model.types import user_workspace

        with pytest.raises(NotFoundError):
            service.perform_changes(project_id, user_workspace("nobody"), [create("model::A")])

    def test_conflict_resolution_access_rules(self, store, service, workspaces, project_id, spec):
        """The primary and backup lines are read-only during resolution; the resolution line is not."""
        service.perform_changes(project_id, spec, [create("model::X", v=0)])
        # Give the stream a conflicting version of X
        commit_to_stream(store, project_id, [create("model::X", v=1)])
        workspaces.update(project_id, spec)

        with pytest.raises(ConflictError):
            service.perform_changes(project_id, spec, [create("model::Y")])
        with pytest.raises(ConflictError):
            service.perform_changes(project_id, spec.backup, [create("model::Y")])
        revision = service.perform_changes(project_id, spec.conflict_resolution, [modify("model::X", v=2)])
        assert revision is not None
        assert workspaces.accept_conflict_resolution(project_id, spec).head_revision_id == revision.id


class TestBulkOperations:
    """Tests for update_entities, delete_entities and delete_package."""

    def test_update_entities_diffs_against_head(self, store, service, project_id, spec):
        service.perform_changes(project_id, spec, [create("model::A", v=1), create("model::B")])
        revision = service.update_entities(
            project_id, spec, [class_entity("model::A", v=2), class_entity("model::B"), class_entity("model::C")]
        )
        snapshot = store.read_entities(project_id, revision.id)
        assert snapshot.paths() == ["model::A", "model::B", "model::C"]
        assert snapshot.get("model::A").content["v"] == 2

    def test_update_entities_without_differences(self, service, project_id, spec):
        service.perform_changes(project_id, spec, [create("model::A")])
        assert service.update_entities(project_id, spec, [class_entity("model::A")]) is None

    def test_update_entities_replace(self, store, service, project_id, spec):
        service.perform_changes(project_id, spec, [create("model::A"), create("model::B")])
        revision = service.update_entities(project_id, spec, [class_entity("model::B")], replace=True)
        assert store.read_entities(project_id, revision.id).paths() == ["model::B"]

    def test_update_entities_duplicate_paths(self, service, project_id, spec):
        with pytest.raises(InvalidArgumentError):
            service.update_entities(project_id, spec, [class_entity("model::A"), class_entity("model::A")])

    def test_update_entities_validates_content(self, service, project_id, spec):
        with pytest.raises(InvalidArgumentError):
            service.update_entities(project_id, spec, [Entity("model::A", "x", {"package": "y", "name": "A"})])

    def test_delete_entities(self, store, service, project_id, spec):
        service.perform_changes(project_id, spec, [create("model::A"), create("model::B")])
        revision = service.delete_entities(project_id, spec, ["model::A", "model::A"])
        assert store.read_entities(project_id, revision.id).paths() == ["model::B"]

    def test_delete_package(self, store, service, project_id, spec):
        service.perform_changes(project_id, spec, [
            create("model::A"), create("model::sub::B"), create("modelx::C"),
        ])
        revision = service.delete_package(project_id, spec, "model")
        assert store.read_entities(project_id, revision.id).paths() == ["modelx::C"]
        assert service.delete_package(project_id, spec, "model") is None
        with pytest.raises(InvalidArgumentError):
            service.delete_package(project_id, spec, "bad package")


class TestProjectConfiguration:
    """Tests for project configuration updates."""

    def test_update_configuration(self, service, project_id, spec):
        revision = service.update_project_configuration(project_id, spec, {"groupId": "org.demo"})
        assert revision.message == "Update project configuration"
        assert service.get_project_configuration(project_id, spec) == {"groupId": "org.demo"}
        assert service.get_project_configuration(project_id, spec, "BASE") == {}
        assert service.get_entities(project_id, spec) == []

    def test_configuration_must_be_mapping(self, service, project_id, spec):
        with pytest.raises(InvalidArgumentError):
            service.update_project_configuration(project_id, spec, ["not", "a", "mapping"])
