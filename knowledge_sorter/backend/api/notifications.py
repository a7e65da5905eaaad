"""Reviewer notification endpoints."""

from fastapi import APIRouter, Query

from knowledge_sorter.backend.services import get_notification_center

router = APIRouter()


@router.get("")
async def list_notifications(
    reviewer_id: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
) -> dict:
    notifications = get_notification_center().list(
        reviewer_id=reviewer_id, status=status_filter, limit=limit
    )
    return {"notifications": [n.to_dict() for n in notifications], "count": len(notifications)}


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str) -> dict:
    return get_notification_center().mark_read(notification_id).to_dict()


@router.post("/{notification_id}/dismiss")
async def dismiss(notification_id: str) -> dict:
    return get_notification_center().dismiss(notification_id).to_dict()
