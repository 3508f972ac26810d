"""
SQLite-backed store for local, filesystem persistence.

One database file (``modelvcs.db``) under the data directory holds every
project. Each revision stores its complete entity snapshot, so reading a
revision never replays history.

Invariants:
    - Every mutating call runs in one ``BEGIN IMMEDIATE`` transaction
    - Pointer compare-and-swap happens inside that transaction
    - sqlite3 errors surface as StorageFailureError with the operation name
    - A read-only store fails every mutating call with UnavailableError

How to change safely:
    - Schema changes must stay loadable by older rows (add columns with defaults)
    - Bump SCHEMA_VERSION and migrate in _create_schema

Table schema:
    projects:   project_id PK, name, description, tags_json, created_at
    revisions:  (project_id, revision_id) PK, parent_id, author/committer,
                timestamps, message, configuration_json
    entities:   (project_id, revision_id, path) PK, classifier_path, content_json
    pointers:   (project_id, name) PK, revision_id, base_revision_id, created_at
    tags:       (project_id, name) PK, revision_id, message, created_at
    reviews:    (project_id, review_id) PK, payload_json
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..errors import ConflictError, NotFoundError, StorageFailureError, UnavailableError
from ..model.types import (
    MAIN_LINE,
    DevelopmentStream,
    Entity,
    EntityChange,
    PatchStream,
    Project,
    Review,
    ReviewState,
    Revision,
    WorkspaceAccessType,
    WorkspaceSpecification,
    WorkspaceType,
    match_stream,
    utc_now,
)
from ..model.version_id import parse_version_id
from .base import BaseStore, Pointer, Tag, new_revision_id
from .entity_store import EntityChangeBatch, EntitySnapshot

logger = logging.getLogger(__name__)

DATABASE_FILE = "modelvcs.db"


def _encode_stream(stream: DevelopmentStream) -> str:
    return match_stream(stream, lambda: "main", lambda v: f"patch:{v}")


def _decode_stream(value: str) -> DevelopmentStream:
    if value == "main":
        return MAIN_LINE
    if value.startswith("patch:"):
        return PatchStream(parse_version_id(value[len("patch:"):]))
    raise StorageFailureError(f"Corrupt stream reference in database: {value!r}")


def _encode_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _decode_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _review_to_json(review: Review) -> str:
    spec = review.workspace_spec
    return json.dumps({
        "workspace_id": spec.workspace_id,
        "workspace_type": spec.type.value,
        "workspace_access_type": spec.access_type.value,
        "source": _encode_stream(spec.source),
        "title": review.title,
        "author": review.author,
        "base_revision_id": review.base_revision_id,
        "description": review.description,
        "labels": list(review.labels),
        "state": review.state.value,
        "approvals": list(review.approvals),
        "created_at": _encode_time(review.created_at),
        "last_updated_at": _encode_time(review.last_updated_at),
        "closed_at": _encode_time(review.closed_at),
        "committed_at": _encode_time(review.committed_at),
        "commit_revision_id": review.commit_revision_id,
    })


def _review_from_row(project_id: str, review_id: int, payload: str) -> Review:
    data = json.loads(payload)
    spec = WorkspaceSpecification(
        data["workspace_id"],
        WorkspaceType(data["workspace_type"]),
        WorkspaceAccessType(data["workspace_access_type"]),
        _decode_stream(data["source"]),
    )
    return Review(
        id=str(review_id),
        project_id=project_id,
        workspace_spec=spec,
        title=data["title"],
        author=data["author"],
        base_revision_id=data["base_revision_id"],
        description=data["description"],
        labels=tuple(data["labels"]),
        state=ReviewState(data["state"]),
        approvals=tuple(data["approvals"]),
        created_at=_decode_time(data["created_at"]),
        last_updated_at=_decode_time(data["last_updated_at"]),
        closed_at=_decode_time(data["closed_at"]),
        committed_at=_decode_time(data["committed_at"]),
        commit_revision_id=data["commit_revision_id"],
    )


def _revision_from_row(row: sqlite3.Row) -> Revision:
    return Revision(
        id=row["revision_id"],
        author_name=row["author_name"],
        authored_at=_decode_time(row["authored_at"]),
        committer_name=row["committer_name"],
        committed_at=_decode_time(row["committed_at"]),
        message=row["message"],
        parent_id=row["parent_id"],
    )


def _pointer_from_row(row: sqlite3.Row) -> Pointer:
    return Pointer(
        name=row["name"],
        revision_id=row["revision_id"],
        base_revision_id=row["base_revision_id"],
        created_at=_decode_time(row["created_at"]),
    )


class SqliteStore(BaseStore):
    """SQLite implementation of VersionedStore.

    Thread safety:
        A connection is opened per operation. Writers in this process are
        serialized by a lock; other processes are handled by SQLite's own
        locking and the busy timeout.

    Example:
        >>> store = SqliteStore("/var/lib/modelvcs")
        >>> store.initialize()
        >>> store.list_projects()
        []
    """

    backend_name = "sqlite"

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        read_only: bool = False,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory holding the database file
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
            read_only: Open the database read-only; mutating calls fail
        """
        super().__init__()
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.read_only = read_only
        self._write_lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self.data_dir / DATABASE_FILE

    def _open(self) -> sqlite3.Connection:
        if self.read_only:
            conn = sqlite3.connect(
                f"{self.db_path.resolve().as_uri()}?mode=ro",
                uri=True,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        else:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        if not self.read_only:
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _connection(self, operation: str, write: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a connection, optionally inside a write transaction.

        Args:
            operation: Description used in error messages
            write: Run inside ``BEGIN IMMEDIATE`` and commit on success

        Yields:
            SQLite connection

        Raises:
            UnavailableError: If ``write`` is requested on a read-only store
            StorageFailureError: On any sqlite3 error
        """
        self._check_initialized()
        if write and self.read_only:
            raise UnavailableError(
                f"Cannot {operation}: store is read-only", feature=operation
            )
        try:
            conn = self._open()
        except sqlite3.Error as e:
            raise StorageFailureError(
                f"Failed to open database {self.db_path}: {e}", details={"operation": operation}
            ) from e
        try:
            if write:
                with self._write_lock:
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        yield conn
                        conn.execute("COMMIT")
                    except BaseException:
                        if conn.in_transaction:
                            conn.execute("ROLLBACK")
                        raise
            else:
                yield conn
        except sqlite3.Error as e:
            raise StorageFailureError(
                f"Database error: {e}", details={"operation": operation}
            ) from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS projects (
                project_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                tags_json TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS revisions (
                project_id TEXT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
                revision_id TEXT NOT NULL,
                parent_id TEXT,
                author_name TEXT NOT NULL,
                authored_at TEXT NOT NULL,
                committer_name TEXT NOT NULL,
                committed_at TEXT NOT NULL,
                message TEXT NOT NULL,
                configuration_json TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (project_id, revision_id)
            );

            CREATE TABLE IF NOT EXISTS entities (
                project_id TEXT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
                revision_id TEXT NOT NULL,
                path TEXT NOT NULL,
                classifier_path TEXT NOT NULL,
                content_json TEXT NOT NULL,
                PRIMARY KEY (project_id, revision_id, path)
            );

            CREATE TABLE IF NOT EXISTS pointers (
                project_id TEXT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                revision_id TEXT NOT NULL,
                base_revision_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (project_id, name)
            );

            CREATE TABLE IF NOT EXISTS tags (
                project_id TEXT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                revision_id TEXT NOT NULL,
                message TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                PRIMARY KEY (project_id, name)
            );

            CREATE TABLE IF NOT EXISTS reviews (
                project_id TEXT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
                review_id INTEGER NOT NULL,
                payload_json TEXT NOT NULL,
                PRIMARY KEY (project_id, review_id)
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, datetime('now'));
        """)

    def initialize(self) -> None:
        """Create the data directory and schema (no-op for read-only stores)."""
        if not self.read_only:
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                with self._write_lock:
                    conn = self._open()
                    try:
                        self._create_schema(conn)
                    finally:
                        conn.close()
            except (OSError, sqlite3.Error) as e:
                raise StorageFailureError(
                    f"Failed to initialize database {self.db_path}: {e}",
                    details={"operation": "initialize store"},
                ) from e
        self._initialized = True
        logger.info(
            "SQLite store initialized",
            extra={"db_path": str(self.db_path), "read_only": self.read_only},
        )

    def close(self) -> None:
        self._initialized = False
        logger.debug("SqliteStore closed")

    # Internal readers shared by several operations

    @staticmethod
    def _require_project(conn: sqlite3.Connection, project_id: str) -> None:
        row = conn.execute(
            "SELECT 1 FROM projects WHERE project_id = ?", (project_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(
                f"Unknown project: {project_id}", resource_type="project", resource_id=project_id
            )

    @staticmethod
    def _revision_row(conn: sqlite3.Connection, project_id: str, revision_id: str) -> sqlite3.Row:
        row = conn.execute(
            "SELECT * FROM revisions WHERE project_id = ? AND revision_id = ?",
            (project_id, revision_id),
        ).fetchone()
        if row is None:
            SqliteStore._require_project(conn, project_id)
            raise NotFoundError(
                f"Unknown revision {revision_id} in project {project_id}",
                resource_type="revision",
                resource_id=revision_id,
            )
        return row

    @staticmethod
    def _load_snapshot(conn: sqlite3.Connection, project_id: str, revision_id: str) -> EntitySnapshot:
        rows = conn.execute(
            "SELECT path, classifier_path, content_json FROM entities "
            "WHERE project_id = ? AND revision_id = ?",
            (project_id, revision_id),
        ).fetchall()
        return EntitySnapshot(
            {
                row["path"]: Entity(row["path"], row["classifier_path"], json.loads(row["content_json"]))
                for row in rows
            },
            revision_id,
        )

    @staticmethod
    def _pointer_row(conn: sqlite3.Connection, project_id: str, name: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT * FROM pointers WHERE project_id = ? AND name = ?", (project_id, name)
        ).fetchone()

    # Projects

    def create_project(self, project: Project, root_pointer: str, author: str,
                       message: str = "Initial commit") -> Revision:
        with self._connection("create project", write=True) as conn:
            existing = conn.execute(
                "SELECT 1 FROM projects WHERE project_id = ?", (project.project_id,)
            ).fetchone()
            if existing is not None:
                raise ConflictError(f"Project {project.project_id} already exists")
            now = utc_now()
            revision = Revision(new_revision_id(), author, now, author, now, message)
            conn.execute(
                "INSERT INTO projects (project_id, name, description, tags_json, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (project.project_id, project.name, project.description,
                 json.dumps(list(project.tags)), _encode_time(project.created_at)),
            )
            self._insert_revision(conn, project.project_id, revision, {})
            conn.execute(
                "INSERT INTO pointers (project_id, name, revision_id, base_revision_id, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (project.project_id, root_pointer, revision.id, revision.id, _encode_time(now)),
            )
            return revision

    @staticmethod
    def _project_from_row(row: sqlite3.Row) -> Project:
        return Project(
            project_id=row["project_id"],
            name=row["name"],
            description=row["description"],
            tags=tuple(json.loads(row["tags_json"])),
            created_at=_decode_time(row["created_at"]),
        )

    def get_project(self, project_id: str) -> Project:
        with self._connection("get project") as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE project_id = ?", (project_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(
                    f"Unknown project: {project_id}", resource_type="project", resource_id=project_id
                )
            return self._project_from_row(row)

    def list_projects(self) -> list[Project]:
        with self._connection("list projects") as conn:
            rows = conn.execute("SELECT * FROM projects ORDER BY project_id").fetchall()
            return [self._project_from_row(row) for row in rows]

    def delete_project(self, project_id: str) -> None:
        with self._connection("delete project", write=True) as conn:
            conn.execute("DELETE FROM projects WHERE project_id = ?", (project_id,))

    # Revisions and entities

    def get_revision(self, project_id: str, revision_id: str) -> Revision:
        with self._connection("get revision") as conn:
            return _revision_from_row(self._revision_row(conn, project_id, revision_id))

    def read_entities(self, project_id: str, revision_id: str) -> EntitySnapshot:
        with self._connection("read entities") as conn:
            self._revision_row(conn, project_id, revision_id)
            return self._load_snapshot(conn, project_id, revision_id)

    def read_project_configuration(self, project_id: str, revision_id: str) -> dict[str, Any]:
        with self._connection("read project configuration") as conn:
            row = self._revision_row(conn, project_id, revision_id)
            return json.loads(row["configuration_json"])

    @staticmethod
    def _insert_revision(conn: sqlite3.Connection, project_id: str, revision: Revision,
                         configuration: dict[str, Any]) -> None:
        conn.execute(
            "INSERT INTO revisions (project_id, revision_id, parent_id, author_name, authored_at, "
            "committer_name, committed_at, message, configuration_json) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                project_id, revision.id, revision.parent_id, revision.author_name,
                _encode_time(revision.authored_at), revision.committer_name,
                _encode_time(revision.committed_at), revision.message,
                json.dumps(configuration, sort_keys=True),
            ),
        )

    def commit(
        self,
        project_id: str,
        pointer: str,
        base_revision_id: str,
        changes: list[EntityChange],
        author: str,
        message: str,
        project_configuration: Optional[dict[str, Any]] = None,
    ) -> Revision:
        with self._connection("commit changes", write=True) as conn:
            self._require_project(conn, project_id)
            current = self._pointer_row(conn, project_id, pointer)
            if current is None:
                raise NotFoundError(
                    f"Unknown line {pointer!r} in project {project_id}",
                    resource_type="pointer",
                    resource_id=pointer,
                )
            if current["revision_id"] != base_revision_id:
                raise ConflictError(
                    f"Cannot commit to {pointer!r}: expected head {base_revision_id}, "
                    f"found {current['revision_id']}",
                    details={"project_id": project_id, "pointer": pointer},
                )
            parent_row = self._revision_row(conn, project_id, base_revision_id)
            batch = EntityChangeBatch(self._load_snapshot(conn, project_id, base_revision_id))
            batch.apply(changes)
            now = utc_now()
            revision = Revision(
                new_revision_id(), author, now, author, now, message, parent_id=base_revision_id
            )
            snapshot = batch.seal(revision.id)
            configuration = (
                project_configuration
                if project_configuration is not None
                else json.loads(parent_row["configuration_json"])
            )
            self._insert_revision(conn, project_id, revision, configuration)
            conn.executemany(
                "INSERT INTO entities (project_id, revision_id, path, classifier_path, content_json) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (project_id, revision.id, e.path, e.classifier_path, json.dumps(e.content, sort_keys=True))
                    for e in snapshot.scan()
                ],
            )
            conn.execute(
                "UPDATE pointers SET revision_id = ? WHERE project_id = ? AND name = ?",
                (revision.id, project_id, pointer),
            )
            logger.debug(
                "Revision committed",
                extra={"project_id": project_id, "pointer": pointer, "revision_id": revision.id},
            )
            return revision

    # Pointers

    def create_pointer(self, project_id: str, name: str, revision_id: str,
                       base_revision_id: Optional[str] = None) -> Pointer:
        with self._connection("create pointer", write=True) as conn:
            self._require_project(conn, project_id)
            if self._pointer_row(conn, project_id, name) is not None:
                raise ConflictError(f"Pointer {name!r} already exists in project {project_id}")
            base = base_revision_id or revision_id
            self._revision_row(conn, project_id, revision_id)
            self._revision_row(conn, project_id, base)
            pointer = Pointer(name, revision_id, base)
            conn.execute(
                "INSERT INTO pointers (project_id, name, revision_id, base_revision_id, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (project_id, name, revision_id, base, _encode_time(pointer.created_at)),
            )
            return pointer

    def get_pointer(self, project_id: str, name: str) -> Optional[Pointer]:
        with self._connection("get pointer") as conn:
            row = self._pointer_row(conn, project_id, name)
            if row is None:
                self._require_project(conn, project_id)
                return None
            return _pointer_from_row(row)

    def list_pointers(self, project_id: str, prefix: str = "") -> list[Pointer]:
        with self._connection("list pointers") as conn:
            self._require_project(conn, project_id)
            rows = conn.execute(
                "SELECT * FROM pointers WHERE project_id = ? AND substr(name, 1, ?) = ? ORDER BY name",
                (project_id, len(prefix), prefix),
            ).fetchall()
            return [_pointer_from_row(row) for row in rows]

    def delete_pointer(self, project_id: str, name: str) -> bool:
        with self._connection("delete pointer", write=True) as conn:
            self._require_project(conn, project_id)
            cursor = conn.execute(
                "DELETE FROM pointers WHERE project_id = ? AND name = ?", (project_id, name)
            )
            return cursor.rowcount > 0

    def rename_pointer(self, project_id: str, old_name: str, new_name: str,
                       replace: bool = False) -> Pointer:
        with self._connection("rename pointer", write=True) as conn:
            self._require_project(conn, project_id)
            row = self._pointer_row(conn, project_id, old_name)
            if row is None:
                raise NotFoundError(
                    f"Cannot rename pointer {old_name!r}: not found",
                    resource_type="pointer",
                    resource_id=old_name,
                )
            if self._pointer_row(conn, project_id, new_name) is not None:
                if not replace:
                    raise ConflictError(
                        f"Cannot rename pointer {old_name!r}: {new_name!r} already exists"
                    )
                conn.execute(
                    "DELETE FROM pointers WHERE project_id = ? AND name = ?", (project_id, new_name)
                )
            conn.execute(
                "UPDATE pointers SET name = ? WHERE project_id = ? AND name = ?",
                (new_name, project_id, old_name),
            )
            return Pointer(new_name, row["revision_id"], row["base_revision_id"],
                           _decode_time(row["created_at"]))

    # Tags

    def create_tag(self, project_id: str, name: str, revision_id: str, message: str = "") -> Tag:
        with self._connection("create tag", write=True) as conn:
            self._revision_row(conn, project_id, revision_id)
            existing = conn.execute(
                "SELECT 1 FROM tags WHERE project_id = ? AND name = ?", (project_id, name)
            ).fetchone()
            if existing is not None:
                raise ConflictError(f"Tag {name!r} already exists in project {project_id}")
            tag = Tag(name, revision_id, message)
            conn.execute(
                "INSERT INTO tags (project_id, name, revision_id, message, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (project_id, name, revision_id, message, _encode_time(tag.created_at)),
            )
            return tag

    def list_tags(self, project_id: str, prefix: str = "") -> list[Tag]:
        with self._connection("list tags") as conn:
            self._require_project(conn, project_id)
            rows = conn.execute(
                "SELECT * FROM tags WHERE project_id = ? AND substr(name, 1, ?) = ? ORDER BY name",
                (project_id, len(prefix), prefix),
            ).fetchall()
            return [
                Tag(row["name"], row["revision_id"], row["message"], _decode_time(row["created_at"]))
                for row in rows
            ]

    # Reviews

    def create_review(self, review: Review) -> Review:
        with self._connection("create review", write=True) as conn:
            self._require_project(conn, review.project_id)
            row = conn.execute(
                "SELECT COALESCE(MAX(review_id), 0) + 1 AS next_id FROM reviews WHERE project_id = ?",
                (review.project_id,),
            ).fetchone()
            review_id = row["next_id"]
            conn.execute(
                "INSERT INTO reviews (project_id, review_id, payload_json) VALUES (?, ?, ?)",
                (review.project_id, review_id, _review_to_json(review)),
            )
            return _review_from_row(review.project_id, review_id, _review_to_json(review))

    def update_review(self, review: Review) -> Review:
        with self._connection("update review", write=True) as conn:
            cursor = conn.execute(
                "UPDATE reviews SET payload_json = ? WHERE project_id = ? AND review_id = ?",
                (_review_to_json(review), review.project_id, int(review.id)),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Unknown review {review.id} in project {review.project_id}",
                    resource_type="review",
                    resource_id=review.id,
                )
            return review

    def get_review(self, project_id: str, review_id: str) -> Review:
        if not str(review_id).isdigit():
            raise NotFoundError(
                f"Unknown review {review_id} in project {project_id}",
                resource_type="review",
                resource_id=review_id,
            )
        with self._connection("get review") as conn:
            row = conn.execute(
                "SELECT * FROM reviews WHERE project_id = ? AND review_id = ?",
                (project_id, int(review_id)),
            ).fetchone()
            if row is None:
                raise NotFoundError(
                    f"Unknown review {review_id} in project {project_id}",
                    resource_type="review",
                    resource_id=review_id,
                )
            return _review_from_row(project_id, row["review_id"], row["payload_json"])

    def list_reviews(self, project_id: str) -> list[Review]:
        with self._connection("list reviews") as conn:
            self._require_project(conn, project_id)
            rows = conn.execute(
                "SELECT * FROM reviews WHERE project_id = ? ORDER BY review_id", (project_id,)
            ).fetchall()
            return [_review_from_row(project_id, row["review_id"], row["payload_json"]) for row in rows]
