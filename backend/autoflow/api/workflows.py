from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from autoflow.api.deps import get_executor, get_user_id
from autoflow.db.database import get_db
from autoflow.schemas.workflow import ExecutionSummary, WorkflowCreate, WorkflowResponse, WorkflowUpdate
from autoflow.services import workflow_service
from autoflow.services.executor_service import ExecutorService
from autoflow.services.scheduler_service import sync_workflow_schedule

router = APIRouter(prefix="/api/workflows", tags=["workflows"])


@router.get("", response_model=list[WorkflowResponse])
async def list_workflows(
    include_archived: bool = False,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await workflow_service.list_workflows(db, user_id, include_archived)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(workflow_id: str, user_id: str = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await workflow_service.load_workflow(db, workflow_id, user_id)


@router.post("", response_model=WorkflowResponse, status_code=201)
async def create_workflow(req: WorkflowCreate, user_id: str = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    workflow = await workflow_service.save_workflow(db, req, user_id)
    sync_workflow_schedule(workflow)
    return workflow


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    req: WorkflowUpdate,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    workflow = await workflow_service.update_workflow(db, workflow_id, req, user_id)
    sync_workflow_schedule(workflow)
    return workflow


@router.delete("/{workflow_id}")
async def delete_workflow(workflow_id: str, user_id: str = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    workflow = await workflow_service.archive_workflow(db, workflow_id, user_id)
    sync_workflow_schedule(workflow)
    return {"detail": "Workflow archived", "id": workflow.id}


@router.post("/{workflow_id}/execute", status_code=202)
async def trigger_execution(
    workflow_id: str,
    input_data: dict | None = Body(default=None),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    executor: ExecutorService = Depends(get_executor),
):
    await workflow_service.load_workflow(db, workflow_id, user_id)
    execution = await executor.start_execution(workflow_id, input_data or {}, trigger="manual")
    return {"execution_id": execution.id, "status": execution.status}


@router.post("/webhook/{workflow_id}", status_code=202)
async def webhook_trigger(
    workflow_id: str,
    input_data: dict | None = Body(default=None),
    executor: ExecutorService = Depends(get_executor),
):
    """Trigger an execution via webhook. No user header required."""
    execution = await executor.start_execution(workflow_id, input_data or {}, trigger="webhook")
    return {"execution_id": execution.id, "status": execution.status, "trigger": "webhook"}


@router.get("/{workflow_id}/executions", response_model=list[ExecutionSummary])
async def list_executions(
    workflow_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    executor: ExecutorService = Depends(get_executor),
):
    await workflow_service.load_workflow(db, workflow_id, user_id)
    return await executor.history.list_by_workflow(workflow_id, limit)
