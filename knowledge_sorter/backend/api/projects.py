"""Project reference-data endpoints.

Registering projects, paths or signatures rebuilds the in-memory scorer and
resolver so the next router batch sees them.
"""

from fastapi import APIRouter
from pydantic import BaseModel, Field
from starlette import status

from knowledge_sorter.backend.services import get_resolver, get_scorer, get_store, reload_registries
from knowledge_sorter.log_config import get_logger
from knowledge_sorter.models import PathType, ProjectSignature

log = get_logger("backend.api.projects")

router = APIRouter()


class AddProjectRequest(BaseModel):
    """Request model for creating or updating a project."""

    project_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    client_id: str | None = None
    platform_id: str | None = None
    parent_id: str | None = None
    server_path: str | None = Field(default=None, description="Registered as a folder path")


class RegisterPathRequest(BaseModel):
    path: str = Field(..., min_length=1)
    path_type: PathType = PathType.SERVER


class SignatureRequest(BaseModel):
    """Signals used to detect a project in free text."""

    name: str | None = None
    aliases: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    path_fragments: list[str] = Field(default_factory=list)
    weight: float = Field(default=1.0, gt=0.0, le=1.0)
    server_path: str | None = None


@router.get("")
async def list_projects() -> dict:
    projects = get_store().list_projects()
    return {"projects": projects, "count": len(projects)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_project(request: AddProjectRequest) -> dict:
    log.info(f"add_project: {request.project_id}")
    project = get_store().add_project(**request.model_dump())
    reload_registries()
    return project


@router.get("/paths")
async def list_paths() -> dict:
    records = get_resolver().records
    return {
        "paths": [
            {"path": r.path, "project_id": r.project_id, "path_type": r.path_type}
            for r in records
        ],
        "count": len(records),
    }


@router.post("/{project_id}/paths")
async def register_path(project_id: str, request: RegisterPathRequest) -> dict:
    """Register a path for a project. Re-registering the same path is a no-op."""
    result = get_store().register_path(project_id, request.path, request.path_type.value)
    if result["created"]:
        reload_registries()
    return result


@router.get("/signatures")
async def list_signatures() -> dict:
    return {"projects": get_scorer().list_projects()}


@router.put("/{project_id}/signature")
async def upsert_signature(project_id: str, request: SignatureRequest) -> dict:
    signature = ProjectSignature.from_dict(
        {"id": project_id, **request.model_dump(), "name": request.name or project_id}
    )
    get_store().upsert_signature(signature)
    reload_registries()
    log.info(f"Signature stored for {project_id}")
    return signature.to_dict()
