"""Purge request API endpoints.

Flag -> review (approve/reject) -> execute. Review never deletes; execute
only runs on approved requests.
"""

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field
from starlette import status

from knowledge_sorter.backend.services import get_purge_executor, get_purge_gate
from knowledge_sorter.log_config import get_logger

log = get_logger("backend.api.purge")

router = APIRouter()


class FlagPurgeRequest(BaseModel):
    table_name: str = Field(..., description="Table the rows live in")
    record_ids: list[str] = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
    flagged_by: str = Field(default="api")
    cutoff_date: str | None = None
    project_id: str | None = None
    reviewer_id: str | None = None


class ReviewPurgeRequest(BaseModel):
    reviewer_id: str = Field(..., min_length=1)
    decision: str = Field(..., description="approve or reject")
    notes: str | None = None


class ExecutePurgeRequest(BaseModel):
    executor_id: str = Field(..., min_length=1)


@router.get("")
async def list_purge_requests(
    status_filter: str | None = Query(default="pending", alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
) -> dict:
    requests = get_purge_gate().list(
        status=None if status_filter == "all" else status_filter,
        limit=limit,
    )
    return {"purge_requests": [r.to_dict() for r in requests], "count": len(requests)}


@router.get("/{request_id}")
async def get_purge_request(request_id: str) -> dict:
    return get_purge_gate().get(request_id).to_dict()


@router.post("", status_code=status.HTTP_201_CREATED)
async def flag_purge(request: FlagPurgeRequest) -> dict:
    """Propose deleting rows. Nothing is deleted until approved and executed."""
    log.info(f"flag_purge: {len(request.record_ids)} rows of {request.table_name}")
    return get_purge_gate().flag_purge(**request.model_dump()).to_dict()


@router.post("/{request_id}/review")
async def review_purge(request_id: str, request: ReviewPurgeRequest) -> dict:
    log.info(f"review_purge: {request_id} -> {request.decision}")
    purge = get_purge_gate().review(
        request_id,
        reviewer_id=request.reviewer_id,
        decision=request.decision,
        notes=request.notes,
    )
    return purge.to_dict()


@router.post("/{request_id}/execute")
async def execute_purge(request_id: str, request: ExecutePurgeRequest) -> dict:
    """Delete the rows of an approved request.

    Returns 409 for pending, rejected or already executed requests.
    """
    result = get_purge_executor().execute(request_id, request.executor_id)
    return {"purge_request": result["request"].to_dict(), "deleted": result["deleted"]}
