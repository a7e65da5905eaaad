"""Pipeline API endpoints.

Manual triggers for what the background jobs do on a timer, plus read-only
attribution lookups:
- POST /extractions  enqueue a captured fragment
- POST /sort         run one router batch now
- POST /sweep        run one dedup/retention cycle now
- POST /requeue      return failed extractions to pending
- POST /reroute      re-attribute unattributed records
- POST /detect       score text against project signatures
- GET  /resolve-path resolve a path to its project
- GET  /stats        row counts and queue state
"""

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field
from starlette import status

from knowledge_sorter.backend.services import (
    get_rerouter,
    get_resolver,
    get_router,
    get_scorer,
    get_store,
    get_sweep,
)
from knowledge_sorter.config import get_config
from knowledge_sorter.db.schema import TYPED_TABLES
from knowledge_sorter.errors import NotFoundError, ValidationError
from knowledge_sorter.log_config import get_logger

log = get_logger("backend.api.pipeline")

router = APIRouter()


class EnqueueExtractionRequest(BaseModel):
    content: str = Field(..., description="Captured fragment")
    category: str | None = Field(default=None, description="todo, bug, issue, decision, lesson")
    project_path: str | None = None
    session_id: str | None = None
    priority: str | None = Field(default=None, description="low, normal, high, critical")
    metadata: dict = Field(default_factory=dict)


class SortRequest(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=1000)


class RequeueRequest(BaseModel):
    extraction_ids: list[str] | None = Field(
        default=None, description="Specific failed extractions (default: oldest failed)"
    )
    limit: int = Field(default=100, ge=1, le=1000)


class RerouteRequest(BaseModel):
    tables: list[str] | None = Field(default=None, description="Typed tables (default: all)")
    limit: int = Field(default=500, ge=1, le=10000)
    min_confidence: float = Field(default=0.2, ge=0.0, le=1.0)
    dry_run: bool = False


class DetectRequest(BaseModel):
    content: str
    fallback: str | None = None
    all_projects: bool = Field(default=False, description="Also list every project mentioned")


@router.post("/extractions", status_code=status.HTTP_201_CREATED)
async def enqueue_extraction(request: EnqueueExtractionRequest) -> dict:
    extraction_id = get_store().add_extraction(**request.model_dump())
    log.debug(f"Enqueued extraction {extraction_id} (category={request.category})")
    return {"id": extraction_id, "status": "pending"}


@router.get("/extractions/{extraction_id}")
async def get_extraction(extraction_id: str) -> dict:
    extraction = get_store().get_extraction(extraction_id)
    if extraction is None:
        raise NotFoundError(f"Extraction not found: {extraction_id}")
    return extraction.to_dict()


@router.post("/sort")
async def sort_now(request: SortRequest | None = None) -> dict:
    """Run one extraction router batch immediately."""
    batch_size = request.batch_size if request else None
    report = await get_router().process_pending(batch_size)
    return report.to_dict()


@router.post("/sweep")
async def sweep_now() -> dict:
    """Run one dedup/retention cycle immediately."""
    report = await get_sweep().run_cycle()
    return report.to_dict()


@router.post("/requeue")
async def requeue_failed(request: RequeueRequest | None = None) -> dict:
    request = request or RequeueRequest()
    count = get_store().requeue_failed(request.extraction_ids, limit=request.limit)
    return {"requeued": count}


@router.post("/reroute")
async def reroute(request: RerouteRequest | None = None) -> dict:
    request = request or RerouteRequest()
    tables = request.tables or list(TYPED_TABLES)
    unknown = [t for t in tables if t not in TYPED_TABLES]
    if unknown:
        raise ValidationError(f"Unknown table(s): {', '.join(unknown)}")
    log.info(f"reroute: tables={tables}, dry_run={request.dry_run}")
    report = get_rerouter().run(
        tables,
        limit=request.limit,
        min_confidence=request.min_confidence,
        dry_run=request.dry_run,
    )
    return report.to_dict()


@router.post("/detect")
async def detect(request: DetectRequest) -> dict:
    scorer = get_scorer()
    detection = scorer.detect(request.content, request.fallback or get_config().fallback_project)
    result = detection.to_dict()
    if request.all_projects:
        result["all_projects"] = scorer.detect_all(request.content)
    return result


@router.get("/resolve-path")
async def resolve_path(path: str = Query(..., min_length=1)) -> dict:
    resolver = get_resolver()
    match = resolver.resolve(path)
    return {
        "path": path,
        "normalized": resolver.normalize(path),
        "match": match.to_dict() if match else None,
    }


@router.get("/stats")
async def stats() -> dict:
    return get_store().stats()
