"""
Integration tests for the admin CLI.

Tests cover:
- Listing commands against a populated SQLite store
- Comparisons by version id and HEAD, text and JSON output
- Error reporting and exit codes
"""

import json
import tempfile

import pytest

from sdlc.modelvcs_core.model.types import MAIN_LINE, Project, PatchStream
from sdlc.modelvcs_core.model.version_id import VersionId, VersionType
from sdlc.modelvcs_core.release.patches import PatchManager
from sdlc.modelvcs_core.release.versions import VersionManager
from sdlc.modelvcs_core.store.sqlite import SqliteStore
from sdlc.modelvcs_core.streams import stream_pointer
from sdlc.modelvcs_core.tools.admin_cli import AdminCLI, main
from sdlc.modelvcs_core.workspace.manager import WorkspaceManager
from tests.factories import commit_to_stream, create, modify


class TestAdminCLI:
    """Tests for the modelvcs-admin command."""

    @pytest.fixture
    def data_dir(self):
        """Create and populate a temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteStore(tmpdir)
            store.initialize()
            store.create_project(Project("demo", "Demo"), stream_pointer(MAIN_LINE), "admin")
            versions = VersionManager(store)
            workspaces = WorkspaceManager(store)
            commit_to_stream(store, "demo", [create("model::A", v=0)])
            versions.new_version("demo", VersionType.MAJOR)
            commit_to_stream(store, "demo", [modify("model::A", v=1), create("model::B")])
            versions.new_version("demo", VersionType.MINOR)
            PatchManager(store, versions, workspaces).new_patch("demo", VersionId(1, 0, 0))
            workspaces.create_workspace("demo", "alice")
            workspaces.create_workspace("demo", "fixer", source=PatchStream(VersionId(1, 0, 1)))
            store.close()
            yield tmpdir

    def run(self, capsys, data_dir, *args):
        code = main(["--data-dir", data_dir, *args])
        out, err = capsys.readouterr()
        return code, out, err

    def test_projects(self, capsys, data_dir):
        code, out, _ = self.run(capsys, data_dir, "projects")
        assert code == 0
        assert [p["projectId"] for p in json.loads(out)] == ["demo"]

    def test_versions_with_bounds(self, capsys, data_dir):
        code, out, _ = self.run(capsys, data_dir, "versions", "demo")
        assert code == 0
        assert [v["id"] for v in json.loads(out)] == ["1.0.0", "1.1.0"]
        _, out, _ = self.run(capsys, data_dir, "versions", "demo", "--min-minor", "1")
        assert [v["id"] for v in json.loads(out)] == ["1.1.0"]

    def test_patches(self, capsys, data_dir):
        code, out, _ = self.run(capsys, data_dir, "patches", "demo")
        assert code == 0
        [patch] = json.loads(out)
        assert patch["patchReleaseVersionId"] == "1.0.1"
        assert patch["sourceVersionId"] == "1.0.0"
        assert patch["released"] is False

    def test_workspaces(self, capsys, data_dir):
        code, out, _ = self.run(capsys, data_dir, "workspaces", "demo")
        assert code == 0
        workspaces = {w["workspaceId"]: w for w in json.loads(out)}
        assert set(workspaces) == {"alice", "fixer"}
        assert workspaces["alice"]["state"] == "ACTIVE"
        assert workspaces["fixer"]["source"] == str(PatchStream(VersionId(1, 0, 1)))

    def test_compare_versions_text(self, capsys, data_dir):
        code, out, _ = self.run(capsys, data_dir, "compare", "demo", "1.0.0", "1.1.0")
        assert code == 0
        lines = out.splitlines()
        assert lines[0].startswith("Comparing ")
        assert "  [ADDED] model::B" in lines
        assert "  [MODIFIED] model::A" in lines

    def test_compare_json_with_head(self, capsys, data_dir):
        code, out, _ = self.run(capsys, data_dir, "compare", "demo", "1.1.0", "HEAD", "--format", "json")
        assert code == 0
        data = json.loads(out)
        assert data["entityDiffs"] == []
        assert data["fromRevisionId"] == data["toRevisionId"]

    def test_unknown_version_fails(self, capsys, data_dir):
        code, out, err = self.run(capsys, data_dir, "compare", "demo", "9.0.0", "HEAD")
        assert code == 1
        assert out == ""
        assert err.startswith("Error: Unknown version 9.0.0")

    def test_unknown_project_fails(self, capsys, data_dir):
        code, _, err = self.run(capsys, data_dir, "versions", "nope")
        assert code == 1
        assert "nope" in err

    def test_resolve_literal_revision(self, data_dir):
        store = SqliteStore(data_dir, read_only=True)
        store.initialize()
        try:
            cli = AdminCLI(store)
            head = cli.resolve("demo", "HEAD")
            assert cli.resolve("demo", head) == head
            assert cli.resolve("demo", "1.1.0") == head
        finally:
            store.close()
