"""Conflict review API endpoints.

Flagging records a pending conflict and notifies a reviewer; only resolve
changes data.
"""

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field
from starlette import status

from knowledge_sorter.backend.services import get_conflict_gate
from knowledge_sorter.log_config import get_logger
from knowledge_sorter.models import ConflictType, Priority

log = get_logger("backend.api.conflicts")

router = APIRouter()


class FlagConflictRequest(BaseModel):
    """Request body for flagging a conflict."""

    existing_table: str = Field(..., description="Typed table holding the existing record")
    existing_id: str = Field(..., description="Id of the existing record")
    new_content: str = Field(..., min_length=1, description="Content that contradicts it")
    conflict_type: str = Field(default=ConflictType.CONTRADICTION.value)
    description: str | None = None
    priority: str = Field(default=Priority.MEDIUM.value)
    new_source: str | None = None
    project_id: str | None = None
    detected_by: str | None = None
    reviewer_id: str | None = Field(default=None, description="Who gets the notification")


class ResolveConflictRequest(BaseModel):
    """Request body for resolving a conflict."""

    resolver_id: str = Field(..., min_length=1)
    resolution: str = Field(..., description="keep_existing, update, both_valid or dismiss")
    notes: str | None = None


@router.get("")
async def list_conflicts(
    status_filter: str | None = Query(default="pending", alias="status"),
    project_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
) -> dict:
    """List conflicts, pending by default. Pass status=all for every state."""
    gate = get_conflict_gate()
    conflicts = gate.list(
        status=None if status_filter == "all" else status_filter,
        project_id=project_id,
        limit=limit,
    )
    return {"conflicts": [c.to_dict() for c in conflicts], "count": len(conflicts)}


@router.get("/{conflict_id}")
async def get_conflict(conflict_id: str) -> dict:
    return get_conflict_gate().get(conflict_id).to_dict()


@router.post("", status_code=status.HTTP_201_CREATED)
async def flag_conflict(request: FlagConflictRequest) -> dict:
    """Flag a conflict between an existing record and new content."""
    log.info(f"flag_conflict: {request.existing_table}/{request.existing_id}")
    conflict = get_conflict_gate().flag(**request.model_dump())
    return conflict.to_dict()


@router.post("/{conflict_id}/resolve")
async def resolve_conflict(conflict_id: str, request: ResolveConflictRequest) -> dict:
    """Apply one resolution to a pending conflict.

    Returns 409 if the conflict was already resolved.
    """
    log.info(f"resolve_conflict: {conflict_id} -> {request.resolution}")
    result = get_conflict_gate().resolve(
        conflict_id,
        resolver_id=request.resolver_id,
        resolution=request.resolution,
        notes=request.notes,
    )
    return {"conflict": result["conflict"].to_dict(), "effect": result["effect"]}
