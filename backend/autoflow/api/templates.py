from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from autoflow.api.deps import get_user_id
from autoflow.db.database import get_db
from autoflow.schemas.workflow import WorkflowResponse
from autoflow.services import workflow_service

router = APIRouter(prefix="/api/templates", tags=["templates"])


class CloneRequest(BaseModel):
    name: str | None = None


class PublishRequest(BaseModel):
    workflow_id: str
    category: str | None = None


@router.get("", response_model=list[WorkflowResponse])
async def list_templates(category: str | None = None, db: AsyncSession = Depends(get_db)):
    return await workflow_service.list_templates(db, category)


@router.post("/{template_id}/clone", response_model=WorkflowResponse, status_code=201)
async def clone_template(
    template_id: str,
    req: CloneRequest | None = None,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await workflow_service.clone_template(db, template_id, user_id, req.name if req else None)


@router.post("/publish", response_model=WorkflowResponse, status_code=201)
async def publish_template(
    req: PublishRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Publish one of the caller's workflows as a shared template."""
    return await workflow_service.publish_template(db, req.workflow_id, user_id, req.category)
