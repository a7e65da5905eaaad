"""API routers for the Knowledge Sorter backend."""

from fastapi import APIRouter

from knowledge_sorter.backend.api.conflicts import router as conflicts_router
from knowledge_sorter.backend.api.notifications import router as notifications_router
from knowledge_sorter.backend.api.pipeline import router as pipeline_router
from knowledge_sorter.backend.api.projects import router as projects_router
from knowledge_sorter.backend.api.purge import router as purge_router

# Main API router that aggregates all sub-routers
router = APIRouter()

router.include_router(conflicts_router, prefix="/conflicts", tags=["conflicts"])
router.include_router(purge_router, prefix="/purge-requests", tags=["purge"])
router.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
router.include_router(pipeline_router, prefix="/pipeline", tags=["pipeline"])
router.include_router(projects_router, prefix="/projects", tags=["projects"])

__all__ = ["router"]
