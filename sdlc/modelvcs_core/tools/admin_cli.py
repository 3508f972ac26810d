"""
Admin CLI for inspecting a SQLite-backed store.

Commands:
- projects: List projects
- versions: List versions of a project, optionally bounded
- patches: List patches of a project
- workspaces: List primary workspaces of a project
- compare: Diff two revisions (or two versions) of a project

Usage:
    modelvcs-admin --data-dir /var/lib/modelvcs projects
    modelvcs-admin --data-dir /var/lib/modelvcs versions p1 --min-major 1
    modelvcs-admin --data-dir /var/lib/modelvcs compare p1 1.0.0 HEAD --format json

Invariants:
    - The store is opened read-only; the CLI never mutates anything
    - Failures print the error message and exit with code 1
    - JSON output is deterministic (sorted keys)

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts parsing it
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Optional

from ..compare.comparison import ComparisonEngine
from ..errors import NotFoundError, SdlcError
from ..history.revisions import RevisionHistory
from ..model.types import MAIN_LINE, Comparison
from ..model.version_id import VersionBounds, try_parse_version_id
from ..release.patches import PatchManager
from ..release.versions import VersionManager
from ..store.base import VersionedStore
from ..store.sqlite import SqliteStore
from ..workspace.manager import WorkspaceManager


class AdminCLI:
    """Read-only administrative queries over a store.

    Example:
        >>> cli = AdminCLI(SqliteStore("/var/lib/modelvcs", read_only=True))
        >>> [p["projectId"] for p in cli.projects()]
        ['p1']
    """

    def __init__(self, store: VersionedStore) -> None:
        self.store = store
        self.versions_manager = VersionManager(store)
        self.workspaces_manager = WorkspaceManager(store)
        self.patches_manager = PatchManager(store, self.versions_manager, self.workspaces_manager)
        self.comparisons = ComparisonEngine(store)

    def projects(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in self.store.list_projects()]

    def versions(self, project_id: str, bounds: VersionBounds) -> list[dict[str, Any]]:
        self.store.get_project(project_id)
        return [v.to_dict() for v in self.versions_manager.get_versions(project_id, bounds)]

    def patches(self, project_id: str) -> list[dict[str, Any]]:
        self.store.get_project(project_id)
        return [p.to_dict() for p in self.patches_manager.get_patches(project_id)]

    def workspaces(self, project_id: str) -> list[dict[str, Any]]:
        self.store.get_project(project_id)
        result = []
        for workspace in self.workspaces_manager.get_all_workspaces(project_id):
            data = workspace.to_dict()
            data["state"] = self.workspaces_manager.get_state(project_id, workspace.spec).value
            result.append(data)
        return result

    def resolve(self, project_id: str, ref: str) -> str:
        """Resolve a version id (``1.2.0``) or a main-line ref to a revision id."""
        version_id = try_parse_version_id(ref)
        if version_id is not None:
            version = self.versions_manager.get_version(project_id, version_id)
            if version is None:
                raise NotFoundError(
                    f"Unknown version {version_id} in project {project_id}",
                    resource_type="version",
                    resource_id=str(version_id),
                )
            return version.revision_id
        history = RevisionHistory(self.store, project_id, MAIN_LINE)
        if ref.upper() in ("HEAD", "LATEST", "CURRENT", "BASE"):
            return history.resolve_id(ref)
        return self.store.get_revision(project_id, ref).id

    def compare(self, project_id: str, from_ref: str, to_ref: str) -> Comparison:
        return self.comparisons.compare_revisions(
            project_id, self.resolve(project_id, from_ref), self.resolve(project_id, to_ref)
        )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _print_comparison(comparison: Comparison) -> None:
    print(f"Comparing {comparison.from_revision_id} -> {comparison.to_revision_id}")
    if not comparison.entity_diffs:
        print("No entity changes")
    for diff in comparison.entity_diffs:
        print(f"  [{diff.kind.value}] {diff.path}")
    if comparison.project_configuration_updated:
        print("Project configuration updated")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="modelvcs-admin", description="Model version control admin tool")
    parser.add_argument("--data-dir", required=True, help="Directory holding the SQLite database")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # projects command
    subparsers.add_parser("projects", help="List projects")

    # versions command
    versions_parser = subparsers.add_parser("versions", help="List versions of a project")
    versions_parser.add_argument("project", help="Project id")
    for component in ("major", "minor", "patch"):
        versions_parser.add_argument(f"--min-{component}", type=int, help=f"Lowest {component} (inclusive)")
        versions_parser.add_argument(f"--max-{component}", type=int, help=f"Highest {component} (inclusive)")

    # patches command
    patches_parser = subparsers.add_parser("patches", help="List patches of a project")
    patches_parser.add_argument("project", help="Project id")

    # workspaces command
    workspaces_parser = subparsers.add_parser("workspaces", help="List workspaces of a project")
    workspaces_parser.add_argument("project", help="Project id")

    # compare command
    compare_parser = subparsers.add_parser("compare", help="Diff two revisions or versions")
    compare_parser.add_argument("project", help="Project id")
    compare_parser.add_argument("from_ref", metavar="FROM", help="Revision id, version id or HEAD")
    compare_parser.add_argument("to_ref", metavar="TO", help="Revision id, version id or HEAD")
    compare_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    store = SqliteStore(args.data_dir, read_only=True)

    try:
        store.initialize()
        cli = AdminCLI(store)

        if args.command == "projects":
            _print_json(cli.projects())

        elif args.command == "versions":
            bounds = VersionBounds(
                min_major=args.min_major,
                max_major=args.max_major,
                min_minor=args.min_minor,
                max_minor=args.max_minor,
                min_patch=args.min_patch,
                max_patch=args.max_patch,
            )
            _print_json(cli.versions(args.project, bounds))

        elif args.command == "patches":
            _print_json(cli.patches(args.project))

        elif args.command == "workspaces":
            _print_json(cli.workspaces(args.project))

        elif args.command == "compare":
            comparison = cli.compare(args.project, args.from_ref, args.to_ref)
            if args.format == "json":
                _print_json(comparison.to_dict())
            else:
                _print_comparison(comparison)

    except SdlcError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
