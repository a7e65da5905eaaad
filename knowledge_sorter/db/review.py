"""Review queue persistence: conflicts, purge requests and notifications.

Kept apart from Datastore so the gate components own the review lifecycle
while the datastore owns the records being reviewed.

Status changes are compare-and-set updates ("only if pending"), so a
concurrent or repeated resolution can never overwrite an earlier one.
"""

import json
import time
import uuid as uuid_lib
from typing import Any

from knowledge_sorter.db.store import Datastore
from knowledge_sorter.log_config import get_logger
from knowledge_sorter.models import (
    ConflictRecord,
    ConflictStatus,
    Notification,
    NotificationStatus,
    PurgeRequest,
    PurgeStatus,
)

log = get_logger("db.review")


class ReviewRepository:
    """Persistence for the human review queue.

    Uses the datastore's re-entrant transaction(), so calls made inside an
    outer gate transaction commit or roll back with it.
    """

    def __init__(self, store: Datastore):
        self.store = store

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def create_conflict(
        self,
        existing_table: str,
        existing_id: str,
        existing_content: str | None,
        new_content: str,
        conflict_type: str,
        description: str | None = None,
        priority: str = "medium",
        new_source: str | None = None,
        project_id: str | None = None,
        detected_by: str | None = None,
    ) -> ConflictRecord:
        conflict_id = str(uuid_lib.uuid4())
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO conflicts (
                    id, existing_table, existing_id, existing_content, new_content, new_source,
                    conflict_type, description, priority, status, project_id, detected_by, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
                """,
                (
                    conflict_id,
                    existing_table,
                    existing_id,
                    existing_content,
                    new_content,
                    new_source,
                    conflict_type,
                    description,
                    priority,
                    project_id,
                    detected_by,
                    time.time(),
                ),
            )
            row = conn.execute("SELECT * FROM conflicts WHERE id = ?", (conflict_id,)).fetchone()
        log.debug(f"Created conflict {conflict_id} on {existing_table}/{existing_id}")
        return ConflictRecord.from_row(row)

    def get_conflict(self, conflict_id: str) -> ConflictRecord | None:
        row = self.store.query_one("SELECT * FROM conflicts WHERE id = ?", (conflict_id,))
        return ConflictRecord.from_row(row) if row else None

    def list_conflicts(
        self,
        status: str | None = ConflictStatus.PENDING.value,
        project_id: str | None = None,
        limit: int = 50,
    ) -> list[ConflictRecord]:
        query = "SELECT * FROM conflicts WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if project_id:
            query += " AND project_id = ?"
            params.append(project_id)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return [ConflictRecord.from_row(r) for r in self.store.query(query, params)]

    def transition_conflict(
        self,
        conflict_id: str,
        status: ConflictStatus,
        resolved_by: str,
        notes: str | None = None,
    ) -> bool:
        """Move a pending conflict to a terminal status.

        Returns:
            True if updated, False if the conflict was no longer pending
        """
        with self.store.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE conflicts
                SET status = ?, resolution_notes = ?, resolved_by = ?, resolved_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (status.value, notes, resolved_by, time.time(), conflict_id),
            )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Purge requests
    # ------------------------------------------------------------------

    def create_purge_request(
        self,
        table_name: str,
        record_ids: list[str],
        reason: str,
        flagged_by: str,
        cutoff_date: str | None = None,
        project_id: str | None = None,
    ) -> PurgeRequest:
        request_id = str(uuid_lib.uuid4())
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO purge_requests (
                    id, table_name, record_ids, record_count, cutoff_date, reason,
                    project_id, status, flagged_by, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                """,
                (
                    request_id,
                    table_name,
                    json.dumps(record_ids),
                    len(record_ids),
                    cutoff_date,
                    reason,
                    project_id,
                    flagged_by,
                    time.time(),
                ),
            )
            row = conn.execute("SELECT * FROM purge_requests WHERE id = ?", (request_id,)).fetchone()
        log.debug(f"Created purge request {request_id} for {len(record_ids)} rows of {table_name}")
        return PurgeRequest.from_row(row)

    def get_purge_request(self, request_id: str) -> PurgeRequest | None:
        row = self.store.query_one("SELECT * FROM purge_requests WHERE id = ?", (request_id,))
        return PurgeRequest.from_row(row) if row else None

    def list_purge_requests(
        self,
        status: str | None = PurgeStatus.PENDING.value,
        limit: int = 50,
    ) -> list[PurgeRequest]:
        if status:
            rows = self.store.query(
                "SELECT * FROM purge_requests WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                (status, limit),
            )
        else:
            rows = self.store.query(
                "SELECT * FROM purge_requests ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        return [PurgeRequest.from_row(r) for r in rows]

    def review_purge_request(
        self,
        request_id: str,
        status: PurgeStatus,
        reviewed_by: str,
        notes: str | None = None,
    ) -> bool:
        """Compare-and-set pending -> approved/rejected. Deletes nothing."""
        with self.store.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE purge_requests
                SET status = ?, reviewed_by = ?, reviewed_at = ?, review_notes = ?
                WHERE id = ? AND status = 'pending'
                """,
                (status.value, reviewed_by, time.time(), notes, request_id),
            )
        return cursor.rowcount == 1

    def mark_purge_executed(self, request_id: str, executed_by: str, deleted_count: int) -> bool:
        """Record execution; only an approved, not yet executed request qualifies."""
        with self.store.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE purge_requests
                SET executed_at = ?, executed_by = ?, deleted_count = ?
                WHERE id = ? AND status = 'approved' AND executed_at IS NULL
                """,
                (time.time(), executed_by, deleted_count, request_id),
            )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def create_notification(
        self,
        reviewer_id: str,
        notification_type: str,
        title: str,
        message: str | None = None,
        related_table: str | None = None,
        related_id: str | None = None,
    ) -> Notification:
        notification_id = str(uuid_lib.uuid4())
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO notifications (
                    id, reviewer_id, notification_type, title, message,
                    related_table, related_id, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 'unread', ?)
                """,
                (
                    notification_id,
                    reviewer_id,
                    notification_type,
                    title,
                    message,
                    related_table,
                    related_id,
                    time.time(),
                ),
            )
            row = conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
        return Notification.from_row(row)

    def get_notification(self, notification_id: str) -> Notification | None:
        row = self.store.query_one("SELECT * FROM notifications WHERE id = ?", (notification_id,))
        return Notification.from_row(row) if row else None

    def list_notifications(
        self,
        reviewer_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Notification]:
        query = "SELECT * FROM notifications WHERE 1=1"
        params: list[Any] = []
        if reviewer_id:
            query += " AND reviewer_id = ?"
            params.append(reviewer_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return [Notification.from_row(r) for r in self.store.query(query, params)]

    def set_notification_status(self, notification_id: str, status: NotificationStatus) -> bool:
        with self.store.transaction() as conn:
            if status == NotificationStatus.READ:
                cursor = conn.execute(
                    "UPDATE notifications SET status = 'read', read_at = ? WHERE id = ? AND status = 'unread'",
                    (time.time(), notification_id),
                )
            else:
                cursor = conn.execute(
                    "UPDATE notifications SET status = ? WHERE id = ?",
                    (status.value, notification_id),
                )
        return cursor.rowcount == 1
