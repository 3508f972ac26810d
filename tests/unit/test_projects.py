"""
Unit tests for project management.

Tests cover:
- Project creation and id validation
- Listing and tag filters
- Revision status (committed / released)
"""

import pytest

from sdlc.modelvcs_core.errors import ConflictError, InvalidArgumentError, NotFoundError
from sdlc.modelvcs_core.model.version_id import VersionId, VersionType
from sdlc.modelvcs_core.projects import ProjectManager
from sdlc.modelvcs_core.release.versions import VersionManager
from sdlc.modelvcs_core.workspace.manager import WorkspaceManager
from tests.factories import commit_to_stream, commit_to_workspace, create


@pytest.fixture
def versions(store):
    return VersionManager(store)


@pytest.fixture
def projects(store, versions):
    return ProjectManager(store, versions, default_author="admin")


class TestProjectManager:
    """Tests for ProjectManager."""

    def test_create_project(self, store, projects):
        project = projects.create_project("shop", description="Shop models", tags=["retail"])
        assert project.name == "shop"
        assert project.tags == ("retail",)
        assert projects.get_project("shop") == project
        root = store.get_revision("shop", store.get_pointer("shop", "stream/main").revision_id)
        assert root.author_name == "admin"

    @pytest.mark.parametrize("project_id", ["", "has space", "a/b", None])
    def test_invalid_project_id(self, projects, project_id):
        with pytest.raises(InvalidArgumentError):
            projects.create_project(project_id)

    def test_duplicate_project(self, projects):
        projects.create_project("shop")
        with pytest.raises(ConflictError) as exc:
            projects.create_project("shop")
        assert exc.value.operation == "create project"

    def test_get_projects_by_tag(self, projects):
        projects.create_project("a", tags=["x"])
        projects.create_project("b", tags=["y"])
        assert {p.project_id for p in projects.get_projects()} == {"a", "b"}
        assert [p.project_id for p in projects.get_projects(tag="y")] == ["b"]

    def test_delete_project(self, projects):
        projects.create_project("shop")
        projects.delete_project("shop")
        with pytest.raises(NotFoundError):
            projects.get_project("shop")


class TestRevisionStatus:
    """Tests for ProjectManager.get_revision_status."""

    def test_main_line_revision(self, store, versions, projects, project_id):
        revision = commit_to_stream(store, project_id, [create("model::A")])
        status = projects.get_revision_status(project_id, revision.id)
        assert status.committed
        assert not status.released

        versions.new_version(project_id, VersionType.MAJOR, revision.id)
        status = projects.get_revision_status(project_id, revision.id)
        assert status.released
        assert [v.id for v in status.versions] == [VersionId(1, 0, 0)]

    def test_workspace_revision_is_not_committed(self, store, projects, project_id):
        spec = WorkspaceManager(store).create_workspace(project_id, "alice").spec
        revision = commit_to_workspace(store, project_id, spec, [create("model::A")])
        status = projects.get_revision_status(project_id, revision.id)
        assert not status.committed
        assert status.versions == ()

    def test_unknown_revision(self, projects, project_id):
        with pytest.raises(NotFoundError):
            projects.get_revision_status(project_id, "missing")
