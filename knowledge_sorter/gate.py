"""Conflict and purge gate.

Flagging is append-only: it records a conflict or purge request plus a
notification and never touches the referenced rows. Mutation happens only
when a reviewer resolves a conflict, and deletion only when a separate
executor runs an approved purge request.

Conflict lifecycle:
    pending -> resolved_keep_existing | resolved_update
             | resolved_both_valid | resolved_dismiss   (terminal)

Purge lifecycle:
    pending -> approved | rejected; approved -> executed (by PurgeExecutor)
"""

from __future__ import annotations

from typing import Any

from knowledge_sorter.db.review import ReviewRepository
from knowledge_sorter.db.schema import PURGEABLE_TABLES, TYPED_TABLES
from knowledge_sorter.db.store import Datastore
from knowledge_sorter.errors import (
    AlreadyResolvedError,
    NotApprovedError,
    NotFoundError,
    ValidationError,
)
from knowledge_sorter.log_config import get_logger
from knowledge_sorter.models import (
    ConflictRecord,
    ConflictType,
    Notification,
    NotificationStatus,
    Priority,
    PurgeDecision,
    PurgeRequest,
    PurgeStatus,
    Resolution,
    make_title,
)

log = get_logger("gate")

DEFAULT_REVIEWER = "assigned"


def _require(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if value is None or value == "" or value == []]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def _enum_value(enum_cls, value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field_name}: {value}. Valid: {valid}") from None


class ConflictGate:
    """Flags contradictions and applies reviewer resolutions."""

    def __init__(
        self,
        store: Datastore,
        reviews: ReviewRepository | None = None,
        default_reviewer: str = DEFAULT_REVIEWER,
    ):
        self.store = store
        self.reviews = reviews or ReviewRepository(store)
        self.default_reviewer = default_reviewer

    def get(self, conflict_id: str) -> ConflictRecord:
        conflict = self.reviews.get_conflict(conflict_id)
        if conflict is None:
            raise NotFoundError(f"Conflict not found: {conflict_id}")
        return conflict

    def list(
        self,
        status: str | None = "pending",
        project_id: str | None = None,
        limit: int = 50,
    ) -> list[ConflictRecord]:
        return self.reviews.list_conflicts(status=status, project_id=project_id, limit=limit)

    def flag(
        self,
        existing_table: str,
        existing_id: str,
        new_content: str,
        conflict_type: str = ConflictType.CONTRADICTION.value,
        description: str | None = None,
        priority: str = Priority.MEDIUM.value,
        new_source: str | None = None,
        project_id: str | None = None,
        detected_by: str | None = None,
        reviewer_id: str | None = None,
    ) -> ConflictRecord:
        """Record a conflict between an existing record and new content.

        The existing record is snapshotted, never modified.

        Raises:
            ValidationError: missing fields, unknown table/type/priority
            NotFoundError: the referenced record does not exist
        """
        _require(existing_table=existing_table, existing_id=existing_id, new_content=new_content)
        if existing_table not in TYPED_TABLES:
            raise ValidationError(f"Unknown table: {existing_table}")
        conflict_type = _enum_value(ConflictType, conflict_type, "conflict_type").value
        priority = _enum_value(Priority, priority, "priority").value

        with self.store.transaction():
            existing = self.store.get_record(existing_table, existing_id)
            if existing is None:
                raise NotFoundError(f"Record not found: {existing_table}/{existing_id}")

            conflict = self.reviews.create_conflict(
                existing_table=existing_table,
                existing_id=existing_id,
                existing_content=existing["content"],
                new_content=new_content,
                conflict_type=conflict_type,
                description=description,
                priority=priority,
                new_source=new_source,
                project_id=project_id or existing.get("project_id"),
                detected_by=detected_by,
            )
            self.reviews.create_notification(
                reviewer_id=reviewer_id or self.default_reviewer,
                notification_type="conflict",
                title=f"Knowledge Conflict Detected: {conflict_type}",
                message=description or new_content[:200],
                related_table="conflicts",
                related_id=conflict.id,
            )

        log.info(f"Conflict flagged: {conflict.id} ({conflict_type}) on {existing_table}/{existing_id}")
        return conflict

    def _apply(self, conflict: ConflictRecord, resolution: Resolution) -> dict[str, Any]:
        """Apply the data effect of a resolution. Runs inside resolve()'s transaction."""
        table = conflict.existing_table

        if resolution == Resolution.UPDATE:
            if not self.store.update_record_content(table, conflict.existing_id, conflict.new_content):
                raise NotFoundError(f"Record not found: {table}/{conflict.existing_id}")
            return {"action": "updated", "table": table, "id": conflict.existing_id}

        if resolution == Resolution.BOTH_VALID:
            existing = self.store.get_record(table, conflict.existing_id) or {}
            record_id = self.store.insert_record(
                table,
                title=make_title(conflict.new_content),
                content=conflict.new_content,
                category=existing.get("category"),
                project_path=existing.get("project_path"),
                project_id=existing.get("project_id") or conflict.project_id,
                client_id=existing.get("client_id"),
                platform_id=existing.get("platform_id"),
                source=conflict.new_source or "conflict_resolution",
                attribution_confidence=existing.get("attribution_confidence") or 0.0,
                attribution_source="conflict_resolution",
                metadata={"conflict_id": conflict.id, "coexists_with": conflict.existing_id},
            )
            return {"action": "inserted", "table": table, "id": record_id}

        # keep_existing / dismiss change no data
        return {"action": "none"}

    def resolve(
        self,
        conflict_id: str,
        resolver_id: str,
        resolution: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Apply exactly one resolution to a pending conflict.

        The effect and the status transition commit together; a conflict that
        is no longer pending is rejected without side effects.

        Returns:
            {"conflict": ConflictRecord, "effect": {...}}

        Raises:
            ValidationError, NotFoundError, AlreadyResolvedError
        """
        _require(conflict_id=conflict_id, resolver_id=resolver_id, resolution=resolution)
        resolution = _enum_value(Resolution, resolution, "resolution")

        with self.store.transaction():
            conflict = self.get(conflict_id)
            if not conflict.is_pending:
                raise AlreadyResolvedError("Conflict", conflict.status)

            effect = self._apply(conflict, resolution)

            if not self.reviews.transition_conflict(
                conflict_id, resolution.terminal_status, resolver_id, notes
            ):
                current = self.get(conflict_id)
                raise AlreadyResolvedError("Conflict", current.status)

        log.info(f"Conflict {conflict_id} resolved: {resolution.value} by {resolver_id}")
        return {"conflict": self.get(conflict_id), "effect": effect}


class PurgeGate:
    """Flags candidate deletions and records reviewer decisions.

    Approval is a status flip only; see PurgeExecutor for deletion.
    """

    def __init__(
        self,
        store: Datastore,
        reviews: ReviewRepository | None = None,
        default_reviewer: str = DEFAULT_REVIEWER,
    ):
        self.store = store
        self.reviews = reviews or ReviewRepository(store)
        self.default_reviewer = default_reviewer

    def get(self, request_id: str) -> PurgeRequest:
        request = self.reviews.get_purge_request(request_id)
        if request is None:
            raise NotFoundError(f"Purge request not found: {request_id}")
        return request

    def list(self, status: str | None = "pending", limit: int = 50) -> list[PurgeRequest]:
        return self.reviews.list_purge_requests(status=status, limit=limit)

    def flag_purge(
        self,
        table_name: str,
        record_ids: list[str],
        reason: str,
        flagged_by: str = "sweep",
        cutoff_date: str | None = None,
        project_id: str | None = None,
        reviewer_id: str | None = None,
    ) -> PurgeRequest:
        """Propose deleting record_ids from table_name. Deletes nothing."""
        _require(table_name=table_name, record_ids=record_ids, reason=reason, flagged_by=flagged_by)
        if table_name not in PURGEABLE_TABLES:
            raise ValidationError(f"Table not purgeable: {table_name}")
        record_ids = list(dict.fromkeys(record_ids))

        with self.store.transaction():
            request = self.reviews.create_purge_request(
                table_name=table_name,
                record_ids=record_ids,
                reason=reason,
                flagged_by=flagged_by,
                cutoff_date=cutoff_date,
                project_id=project_id,
            )
            self.reviews.create_notification(
                reviewer_id=reviewer_id or self.default_reviewer,
                notification_type="purge",
                title=f"Purge Request: {len(record_ids)} rows from {table_name}",
                message=reason,
                related_table="purge_requests",
                related_id=request.id,
            )

        log.info(f"Purge flagged: {request.id} ({len(record_ids)} rows of {table_name}) by {flagged_by}")
        return request

    def review(
        self,
        request_id: str,
        reviewer_id: str,
        decision: str,
        notes: str | None = None,
    ) -> PurgeRequest:
        """Approve or reject a pending purge request."""
        _require(request_id=request_id, reviewer_id=reviewer_id, decision=decision)
        decision = _enum_value(PurgeDecision, decision, "decision")
        status = PurgeStatus.APPROVED if decision == PurgeDecision.APPROVE else PurgeStatus.REJECTED

        with self.store.transaction():
            request = self.get(request_id)
            if request.status != PurgeStatus.PENDING.value:
                raise AlreadyResolvedError("Purge request", request.status)
            if not self.reviews.review_purge_request(request_id, status, reviewer_id, notes):
                raise AlreadyResolvedError("Purge request", self.get(request_id).status)

        log.info(f"Purge request {request_id} {status.value} by {reviewer_id}")
        return self.get(request_id)


class PurgeExecutor:
    """Physically deletes rows named by an approved purge request."""

    def __init__(self, store: Datastore, reviews: ReviewRepository | None = None):
        self.store = store
        self.reviews = reviews or ReviewRepository(store)

    def execute(self, request_id: str, executor_id: str) -> dict[str, Any]:
        """Delete the request's rows and stamp the execution.

        Raises:
            NotFoundError: unknown request
            NotApprovedError: request is pending or rejected
            AlreadyResolvedError: request already executed
        """
        _require(request_id=request_id, executor_id=executor_id)

        with self.store.transaction():
            request = self.reviews.get_purge_request(request_id)
            if request is None:
                raise NotFoundError(f"Purge request not found: {request_id}")
            if request.status != PurgeStatus.APPROVED.value:
                raise NotApprovedError(f"Purge request is {request.status}, not approved")
            if request.executed:
                raise AlreadyResolvedError("Purge request", "executed")

            deleted = self.store.purge_rows(request.table_name, request.record_ids)
            if not self.reviews.mark_purge_executed(request_id, executor_id, deleted):
                raise AlreadyResolvedError("Purge request", "executed")

        log.warning(
            f"Purge executed: {request_id} deleted {deleted}/{request.record_count} "
            f"rows from {request.table_name} by {executor_id}"
        )
        return {"request": self.reviews.get_purge_request(request_id), "deleted": deleted}


class NotificationCenter:
    """Reviewer inbox over conflict and purge notifications."""

    def __init__(self, store: Datastore, reviews: ReviewRepository | None = None):
        self.reviews = reviews or ReviewRepository(store)

    def list(
        self,
        reviewer_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Notification]:
        if status is not None:
            status = _enum_value(NotificationStatus, status, "status").value
        return self.reviews.list_notifications(reviewer_id=reviewer_id, status=status, limit=limit)

    def _get(self, notification_id: str) -> Notification:
        notification = self.reviews.get_notification(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification not found: {notification_id}")
        return notification

    def mark_read(self, notification_id: str) -> Notification:
        self._get(notification_id)
        self.reviews.set_notification_status(notification_id, NotificationStatus.READ)
        return self._get(notification_id)

    def dismiss(self, notification_id: str) -> Notification:
        self._get(notification_id)
        self.reviews.set_notification_status(notification_id, NotificationStatus.DISMISSED)
        return self._get(notification_id)
