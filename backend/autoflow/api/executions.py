import asyncio
import json
from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from autoflow.api.deps import get_executor
from autoflow.models.workflow_execution import WorkflowExecution
from autoflow.schemas.workflow import ExecutionResponse, ExecutionSummary
from autoflow.services.executor_service import STREAM_END_EVENTS, ExecutorService

router = APIRouter(prefix="/api/executions", tags=["executions"])


@router.get("/stuck", response_model=list[ExecutionSummary])
async def list_stuck_executions(
    older_than_minutes: int | None = Query(default=None, ge=1),
    executor: ExecutorService = Depends(get_executor),
):
    older_than = timedelta(minutes=older_than_minutes) if older_than_minutes else None
    return await executor.history.find_stuck(older_than)


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(execution_id: str, executor: ExecutorService = Depends(get_executor)):
    return await executor.history.get(execution_id)


async def execution_event_stream(execution: WorkflowExecution, queue: asyncio.Queue, heartbeat: float = 30):
    """SSE events for one execution. A finished execution yields its final event and stops."""
    try:
        if execution.is_terminal:
            event = {
                "type": f"execution_{execution.status}",
                "execution_id": execution.id,
                "steps_completed": execution.steps_completed,
                "error": execution.error_message,
            }
            yield {"event": event["type"], "data": json.dumps(event, default=str)}
            return

        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
                yield {"event": event.get("type", "message"), "data": json.dumps(event, default=str)}
                if event.get("type") in STREAM_END_EVENTS:
                    break
            except asyncio.TimeoutError:
                yield {"event": "heartbeat", "data": json.dumps({"type": "heartbeat"})}
    finally:
        ExecutorService.unsubscribe(execution.id, queue)


@router.get("/{execution_id}/live")
async def live_execution(execution_id: str, executor: ExecutorService = Depends(get_executor)):
    # Subscribe before reading the row so no event falls between the two
    queue = ExecutorService.subscribe(execution_id)
    try:
        execution = await executor.history.get(execution_id)
    except Exception:
        ExecutorService.unsubscribe(execution_id, queue)
        raise
    return EventSourceResponse(execution_event_stream(execution, queue))
