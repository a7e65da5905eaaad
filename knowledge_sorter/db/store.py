"""SQLite datastore for Knowledge Sorter.

Provides:
- Reference data (projects, registered paths, signatures)
- Typed record stores (knowledge, todos, bugs, decisions, lessons)
- The extraction queue consumed by the router
- Session/message state subject to retention
- WAL mode for concurrent access from the API and background jobs
"""

import json
import sqlite3
import threading
import time
import uuid as uuid_lib
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from knowledge_sorter.db.schema import PURGEABLE_TABLES, SCHEMA, TYPED_TABLES
from knowledge_sorter.errors import NotFoundError, ValidationError
from knowledge_sorter.log_config import get_logger
from knowledge_sorter.models import (
    Extraction,
    ExtractionStatus,
    ProjectPathRecord,
    ProjectSignature,
    attribution_scope,
    make_title,
    normalize_title,
)

log = get_logger("db.store")

# SQLite host parameter limit is 999 on older builds
_DELETE_CHUNK = 500

_JSON_COLUMNS = ("tags", "metadata")


def _new_id() -> str:
    return str(uuid_lib.uuid4())


def _decode(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    data = dict(row)
    for column in _JSON_COLUMNS:
        if column in data and isinstance(data[column], str):
            try:
                data[column] = json.loads(data[column])
            except ValueError:
                pass
    return data


def check_table(table: str) -> str:
    """Guard interpolated table names against anything but the typed stores."""
    if table not in TYPED_TABLES:
        raise ValidationError(f"Unknown table: {table}. Valid: {', '.join(TYPED_TABLES)}")
    return table


def check_purgeable(table: str) -> str:
    if table not in PURGEABLE_TABLES:
        raise ValidationError(f"Table not purgeable: {table}. Valid: {', '.join(PURGEABLE_TABLES)}")
    return table


class Datastore:
    """SQLite-backed datastore with WAL mode.

    One connection is shared across threads; a re-entrant lock serializes
    access and transaction() commits only at the outermost level, so
    components can compose several operations into one atomic unit.
    """

    def __init__(self, db_path: Path | str):
        """Open (and create if needed) the datastore.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._depth = 0

        log.info(f"Initializing Datastore at {self.db_path}")
        self._init_connection()
        self._create_schema()

    def _init_connection(self) -> None:
        """Initialize database connection with WAL mode."""
        self.conn = sqlite3.connect(
            str(self.db_path),
            timeout=30.0,
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row

        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=30000")
        self.conn.execute("PRAGMA foreign_keys=ON")

        log.debug("SQLite connection initialized with WAL mode")

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        with self._lock:
            self.conn.executescript(SCHEMA)
            self.conn.commit()
        log.debug("Database schema created/verified")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                log.debug("Datastore connection closed")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically; nested blocks join the outer transaction."""
        with self._lock:
            outermost = self._depth == 0
            self._depth += 1
            try:
                yield self.conn
            except Exception:
                if outermost:
                    self.conn.rollback()
                raise
            else:
                if outermost:
                    self.conn.commit()
            finally:
                self._depth -= 1

    def query(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchall()

    def query_one(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchone()

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def add_project(
        self,
        project_id: str,
        name: str,
        client_id: str | None = None,
        platform_id: str | None = None,
        parent_id: str | None = None,
        server_path: str | None = None,
    ) -> dict[str, Any]:
        """Create or update a project; registers server_path as a folder path."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO projects (id, name, client_id, platform_id, parent_id, server_path, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    client_id = COALESCE(excluded.client_id, projects.client_id),
                    platform_id = COALESCE(excluded.platform_id, projects.platform_id),
                    parent_id = COALESCE(excluded.parent_id, projects.parent_id),
                    server_path = COALESCE(excluded.server_path, projects.server_path)
                """,
                (project_id, name, client_id, platform_id, parent_id, server_path, time.time()),
            )
            if server_path:
                self.register_path(project_id, server_path, path_type="folder")
        log.info(f"Project registered: {project_id} ({name})")
        return self.get_project(project_id)

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        return _decode(self.query_one("SELECT * FROM projects WHERE id = ?", (project_id,)))

    def list_projects(self) -> list[dict[str, Any]]:
        return [dict(r) for r in self.query("SELECT * FROM projects ORDER BY name")]

    def register_path(self, project_id: str, path: str, path_type: str = "server") -> dict[str, Any]:
        """Register a path for a project. Idempotent on the path string.

        Returns:
            {"path", "project_id", "created"}; created=False if already registered
        """
        if not path or not path.strip():
            raise ValidationError("path is required")
        with self.transaction() as conn:
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                raise NotFoundError(f"Project not found: {project_id}")
            cursor = conn.execute(
                """
                INSERT INTO project_paths (project_id, path, path_type, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(path) DO NOTHING
                """,
                (project_id, path, path_type, time.time()),
            )
            created = cursor.rowcount == 1
            owner = conn.execute(
                "SELECT project_id FROM project_paths WHERE path = ?", (path,)
            ).fetchone()["project_id"]

        if not created and owner != project_id:
            log.warning(f"Path {path} already registered to {owner}, not {project_id}")
        elif created:
            log.debug(f"Registered path {path} -> {project_id}")
        return {"path": path, "project_id": owner, "created": created}

    def list_project_paths(self) -> list[ProjectPathRecord]:
        rows = self.query(
            """
            SELECT pp.path, pp.project_id, pp.path_type,
                   p.name AS project_name, p.client_id, p.platform_id
            FROM project_paths pp
            JOIN projects p ON p.id = pp.project_id
            ORDER BY length(pp.path) DESC
            """
        )
        return [
            ProjectPathRecord(
                path=r["path"],
                project_id=r["project_id"],
                path_type=r["path_type"] or "server",
                project_name=r["project_name"],
                client_id=r["client_id"],
                platform_id=r["platform_id"],
            )
            for r in rows
        ]

    def upsert_signature(self, signature: ProjectSignature) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO project_signatures
                    (project_id, name, aliases, keywords, path_fragments, weight, server_path)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    signature.id,
                    signature.name,
                    json.dumps(list(signature.aliases)),
                    json.dumps(list(signature.keywords)),
                    json.dumps(list(signature.path_fragments)),
                    signature.weight,
                    signature.server_path,
                ),
            )

    def list_signatures(self) -> list[ProjectSignature]:
        rows = self.query("SELECT * FROM project_signatures ORDER BY rowid")
        return [ProjectSignature.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Typed record stores
    # ------------------------------------------------------------------

    def insert_record(
        self,
        table: str,
        *,
        title: str,
        content: str,
        category: str | None = None,
        project_path: str | None = None,
        project_id: str | None = None,
        client_id: str | None = None,
        platform_id: str | None = None,
        importance: int = 5,
        priority: str = "medium",
        status: str | None = None,
        tags: list[str] | None = None,
        source: str | None = None,
        source_session_id: str | None = None,
        extraction_id: str | None = None,
        attribution_confidence: float = 0.0,
        attribution_source: str | None = None,
        metadata: dict[str, Any] | None = None,
        created_at: float | None = None,
        record_id: str | None = None,
    ) -> str:
        """Insert a typed record. Scope and title key are derived here."""
        check_table(table)
        record_id = record_id or _new_id()
        with self.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO {table} (
                    id, title, content, category, project_path, project_id, client_id,
                    platform_id, scope, title_key, importance, priority, status, tags,
                    source, source_session_id, extraction_id, attribution_confidence,
                    attribution_source, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    title,
                    content,
                    category,
                    project_path,
                    project_id,
                    client_id,
                    platform_id,
                    attribution_scope(project_id, project_path),
                    normalize_title(title),
                    importance,
                    priority,
                    status,
                    json.dumps(tags or []),
                    source,
                    source_session_id,
                    extraction_id,
                    attribution_confidence,
                    attribution_source,
                    json.dumps(metadata or {}),
                    created_at if created_at is not None else time.time(),
                ),
            )
        log.trace(f"Inserted {table}/{record_id}")
        return record_id

    def get_record(self, table: str, record_id: str) -> dict[str, Any] | None:
        check_table(table)
        return _decode(self.query_one(f"SELECT * FROM {table} WHERE id = ?", (record_id,)))

    def list_records(
        self,
        table: str,
        project_id: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        check_table(table)
        if project_id:
            rows = self.query(
                f"SELECT * FROM {table} WHERE project_id = ? ORDER BY created_at DESC LIMIT ?",
                (project_id, limit),
            )
        else:
            rows = self.query(f"SELECT * FROM {table} ORDER BY created_at DESC LIMIT ?", (limit,))
        return [_decode(r) for r in rows]

    def update_record_content(self, table: str, record_id: str, content: str) -> bool:
        """Replace a record's content; title and title key follow the new content."""
        check_table(table)
        title = make_title(content)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET content = ?, title = ?, title_key = ?, updated_at = ? WHERE id = ?",
                (content, title, normalize_title(title), time.time(), record_id),
            )
        return cursor.rowcount == 1

    def find_duplicate(self, table: str, scope: str, title_key: str) -> str | None:
        """Id of an existing record with the same scope and normalized title.

        An empty title key never matches anything.
        """
        check_table(table)
        if not title_key:
            return None
        row = self.query_one(
            f"SELECT id FROM {table} WHERE scope = ? AND title_key = ? ORDER BY created_at, rowid LIMIT 1",
            (scope, title_key),
        )
        return row["id"] if row else None

    def list_records_for_dedup(self, table: str) -> list[dict[str, Any]]:
        """Rows of a table eligible for dedup, oldest first (insertion order breaks ties).

        Rows a reviewer kept next to a conflicting record (metadata
        coexists_with, written by a both_valid resolution) are left out.
        """
        check_table(table)
        rows = self.query(
            f"SELECT id, title, project_id, project_path, metadata, created_at FROM {table} "
            "ORDER BY created_at ASC, rowid ASC"
        )
        records = [_decode(row) for row in rows]
        return [r for r in records if not (isinstance(r["metadata"], dict) and r["metadata"].get("coexists_with"))]

    def delete_records(self, table: str, record_ids: list[str]) -> int:
        check_table(table)
        return self._delete_ids(table, record_ids)

    def _delete_ids(self, table: str, ids: list[str]) -> int:
        deleted = 0
        with self.transaction() as conn:
            for start in range(0, len(ids), _DELETE_CHUNK):
                chunk = ids[start : start + _DELETE_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                cursor = conn.execute(f"DELETE FROM {table} WHERE id IN ({placeholders})", chunk)
                deleted += cursor.rowcount
        return deleted

    def purge_rows(self, table: str, record_ids: list[str]) -> int:
        """Delete rows by id from any purgeable table."""
        check_purgeable(table)
        return self._delete_ids(table, record_ids)

    def existing_ids(self, table: str, record_ids: list[str]) -> list[str]:
        """Subset of record_ids still present in table."""
        check_purgeable(table)
        found: list[str] = []
        for start in range(0, len(record_ids), _DELETE_CHUNK):
            chunk = record_ids[start : start + _DELETE_CHUNK]
            placeholders = ",".join("?" * len(chunk))
            rows = self.query(f"SELECT id FROM {table} WHERE id IN ({placeholders})", chunk)
            found.extend(r["id"] for r in rows)
        return found

    def list_unattributed(self, table: str, limit: int = 500) -> list[dict[str, Any]]:
        check_table(table)
        rows = self.query(
            f"SELECT * FROM {table} WHERE project_id IS NULL ORDER BY created_at LIMIT ?",
            (limit,),
        )
        return [_decode(r) for r in rows]

    def update_attribution(
        self,
        table: str,
        record_id: str,
        *,
        project_id: str | None,
        project_path: str | None,
        client_id: str | None = None,
        platform_id: str | None = None,
        confidence: float = 0.0,
        source: str | None = None,
    ) -> bool:
        check_table(table)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE {table}
                SET project_id = ?, project_path = ?, client_id = ?, platform_id = ?,
                    scope = ?, attribution_confidence = ?, attribution_source = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    project_id,
                    project_path,
                    client_id,
                    platform_id,
                    attribution_scope(project_id, project_path),
                    confidence,
                    source,
                    time.time(),
                    record_id,
                ),
            )
        return cursor.rowcount == 1

    def count_records(self, table: str) -> int:
        check_table(table)
        return self.query_one(f"SELECT COUNT(*) AS n FROM {table}")["n"]

    # ------------------------------------------------------------------
    # Extraction queue
    # ------------------------------------------------------------------

    def add_extraction(
        self,
        content: str,
        category: str | None = None,
        project_path: str | None = None,
        session_id: str | None = None,
        priority: str | None = None,
        metadata: dict[str, Any] | None = None,
        created_at: float | None = None,
        extraction_id: str | None = None,
    ) -> str:
        extraction_id = extraction_id or _new_id()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO extractions
                    (id, content, category, project_path, session_id, priority, status, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                """,
                (
                    extraction_id,
                    content,
                    category,
                    project_path,
                    session_id,
                    priority,
                    json.dumps(metadata or {}),
                    created_at if created_at is not None else time.time(),
                ),
            )
        return extraction_id

    def get_extraction(self, extraction_id: str) -> Extraction | None:
        row = self.query_one("SELECT * FROM extractions WHERE id = ?", (extraction_id,))
        return Extraction.from_row(row) if row else None

    def get_pending_extractions(self, limit: int = 50) -> list[Extraction]:
        """Oldest pending extractions first."""
        rows = self.query(
            "SELECT * FROM extractions WHERE status = 'pending' ORDER BY created_at ASC, rowid ASC LIMIT ?",
            (limit,),
        )
        return [Extraction.from_row(r) for r in rows]

    def mark_extraction(
        self,
        extraction_id: str,
        status: ExtractionStatus | str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Move a pending extraction to a terminal status.

        Returns False if the extraction was no longer pending.
        """
        status = ExtractionStatus(status)
        with self.transaction() as conn:
            if metadata is None:
                cursor = conn.execute(
                    "UPDATE extractions SET status = ?, processed_at = ? WHERE id = ? AND status = 'pending'",
                    (status.value, time.time(), extraction_id),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE extractions SET status = ?, processed_at = ?, metadata = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (status.value, time.time(), json.dumps(metadata), extraction_id),
                )
        return cursor.rowcount == 1

    def requeue_failed(self, extraction_ids: list[str] | None = None, limit: int = 100) -> int:
        """Return failed extractions to pending, counting attempts in metadata."""
        with self.transaction() as conn:
            if extraction_ids:
                placeholders = ",".join("?" * len(extraction_ids))
                rows = conn.execute(
                    f"SELECT id, metadata FROM extractions WHERE status = 'failed' AND id IN ({placeholders})",
                    extraction_ids,
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT id, metadata FROM extractions WHERE status = 'failed' ORDER BY created_at LIMIT ?",
                    (limit,),
                ).fetchall()

            for row in rows:
                metadata = json.loads(row["metadata"] or "{}")
                metadata["attempts"] = metadata.get("attempts", 1) + 1
                for key in ("error", "error_type"):
                    if key in metadata:
                        metadata[f"last_{key}"] = metadata.pop(key)
                conn.execute(
                    "UPDATE extractions SET status = 'pending', processed_at = NULL, metadata = ? WHERE id = ?",
                    (json.dumps(metadata), row["id"]),
                )
        if rows:
            log.info(f"Requeued {len(rows)} failed extractions")
        return len(rows)

    def count_extractions(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ExtractionStatus}
        for row in self.query("SELECT status, COUNT(*) AS n FROM extractions GROUP BY status"):
            counts[row["status"]] = row["n"]
        return counts

    # ------------------------------------------------------------------
    # Sessions and messages
    # ------------------------------------------------------------------

    def add_session(
        self,
        session_id: str | None = None,
        project_path: str | None = None,
        status: str = "active",
        started_at: float | None = None,
    ) -> str:
        session_id = session_id or _new_id()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO sessions (id, project_path, status, started_at) VALUES (?, ?, ?, ?)",
                (session_id, project_path, status, started_at if started_at is not None else time.time()),
            )
        return session_id

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        return _decode(self.query_one("SELECT * FROM sessions WHERE id = ?", (session_id,)))

    def complete_session(self, session_id: str, ended_at: float | None = None) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE sessions SET status = 'completed', ended_at = ? WHERE id = ?",
                (ended_at if ended_at is not None else time.time(), session_id),
            )
        return cursor.rowcount == 1

    def add_message(
        self,
        session_id: str,
        content: str,
        role: str = "user",
        created_at: float | None = None,
    ) -> str:
        message_id = _new_id()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO messages (id, session_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
                (message_id, session_id, role, content, created_at if created_at is not None else time.time()),
            )
        return message_id

    def count_messages(self, session_id: str | None = None) -> int:
        if session_id is None:
            return self.query_one("SELECT COUNT(*) AS n FROM messages")["n"]
        return self.query_one(
            "SELECT COUNT(*) AS n FROM messages WHERE session_id = ?", (session_id,)
        )["n"]

    def delete_empty_sessions(self, started_before: float) -> int:
        """Delete active sessions started before the cutoff that have no messages."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM sessions
                WHERE status = 'active'
                  AND started_at < ?
                  AND NOT EXISTS (SELECT 1 FROM messages m WHERE m.session_id = sessions.id)
                """,
                (started_before,),
            )
        return cursor.rowcount

    def delete_completed_messages(self, created_before: float, limit: int) -> int:
        """Delete up to limit old messages that belong to completed sessions."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM messages WHERE id IN (
                    SELECT m.id FROM messages m
                    JOIN sessions s ON s.id = m.session_id
                    WHERE s.status = 'completed' AND m.created_at < ?
                    ORDER BY m.created_at
                    LIMIT ?
                )
                """,
                (created_before, limit),
            )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Row counts per table plus queue status."""
        records = {table: self.count_records(table) for table in TYPED_TABLES}
        unattributed = {
            table: self.query_one(f"SELECT COUNT(*) AS n FROM {table} WHERE project_id IS NULL")["n"]
            for table in TYPED_TABLES
        }
        review = {
            "pending_conflicts": self.query_one(
                "SELECT COUNT(*) AS n FROM conflicts WHERE status = 'pending'"
            )["n"],
            "pending_purges": self.query_one(
                "SELECT COUNT(*) AS n FROM purge_requests WHERE status = 'pending'"
            )["n"],
            "unread_notifications": self.query_one(
                "SELECT COUNT(*) AS n FROM notifications WHERE status = 'unread'"
            )["n"],
        }
        return {
            "records": records,
            "unattributed": unattributed,
            "extractions": self.count_extractions(),
            "review": review,
            "projects": self.query_one("SELECT COUNT(*) AS n FROM projects")["n"],
            "project_paths": self.query_one("SELECT COUNT(*) AS n FROM project_paths")["n"],
            "sessions": self.query_one("SELECT COUNT(*) AS n FROM sessions")["n"],
            "messages": self.count_messages(),
        }
