"""Workflow execution engine.

An execution moves ``pending -> running -> completed | failed`` exactly once.
Steps run strictly in order inside one asyncio task per execution; each
handler returns an explicit outcome (completed, failed, skip the rest, or
suspended on a long wait) and the engine turns that outcome into history
updates, counters and live events.
"""

import asyncio
import copy
import logging
from typing import Optional

import httpx
from sqlalchemy import update

from autoflow.db.database import async_session, utcnow
from autoflow.exceptions import DefinitionError, StepRuntimeError
from autoflow.models.workflow import Workflow
from autoflow.models.workflow_execution import WorkflowExecution
from autoflow.services.ai_service import AICapability, AIServiceError, get_ai_service
from autoflow.services.delivery_service import DeliveryError, DeliveryService
from autoflow.services.history_service import ExecutionHistoryStore
from autoflow.services.step_catalog import parse_step, parse_steps
from autoflow.services.step_handlers import HANDLERS, ExecutionContext, StepResult, StepStatus
from autoflow.services.workflow_service import load_workflow

logger = logging.getLogger(__name__)

# Events after which no more events will be published for that execution task
STREAM_END_EVENTS = ("execution_completed", "execution_failed", "execution_waiting")


def _log_entry(step_id, step_type, step_name, status: str, output: dict | None = None, error: str | None = None) -> dict:
    entry = {
        "step_id": step_id,
        "step_type": step_type,
        "step_name": step_name,
        "status": status,
        "timestamp": utcnow().isoformat(),
    }
    if output:
        entry["output"] = output
    if error:
        entry["error"] = error
    return entry


class ExecutorService:
    _event_queues: dict[str, list[asyncio.Queue]] = {}

    @classmethod
    def subscribe(cls, execution_id: str) -> asyncio.Queue:
        if execution_id not in cls._event_queues:
            cls._event_queues[execution_id] = []
        queue: asyncio.Queue = asyncio.Queue()
        cls._event_queues[execution_id].append(queue)
        return queue

    @classmethod
    def unsubscribe(cls, execution_id: str, queue: asyncio.Queue):
        if execution_id in cls._event_queues:
            cls._event_queues[execution_id] = [q for q in cls._event_queues[execution_id] if q is not queue]
            if not cls._event_queues[execution_id]:
                del cls._event_queues[execution_id]

    @classmethod
    async def _emit(cls, execution_id: str, event: dict):
        if execution_id in cls._event_queues:
            for queue in cls._event_queues[execution_id]:
                await queue.put(event)

    def __init__(
        self,
        session_factory=async_session,
        ai: Optional[AICapability] = None,
        delivery: Optional[DeliveryService] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        wait_inline_max_ms: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._ai = ai
        self.delivery = delivery or DeliveryService(http_client)
        self.http_client = http_client
        self.history = ExecutionHistoryStore(session_factory)
        self.wait_inline_max_ms = wait_inline_max_ms
        self._tasks: set[asyncio.Task] = set()

    @property
    def ai(self) -> AICapability:
        if self._ai is None:
            self._ai = get_ai_service()
        return self._ai

    # ─── Triggering ────────────────────────────────────────────

    async def start_execution(
        self,
        workflow_id: str,
        input_data: Optional[dict] = None,
        trigger: str = "manual",
        background: bool = True,
    ) -> WorkflowExecution:
        """Validate, record a pending execution and hand it to a background task.

        Every structural problem is raised as :class:`DefinitionError` before
        anything is written, so a rejected trigger leaves no history behind.
        """
        async with self._session_factory() as db:
            workflow = await load_workflow(db, workflow_id)

        if workflow.is_template:
            raise DefinitionError("Templates cannot be executed; clone the template first")
        if workflow.status == "archived":
            raise DefinitionError("Archived workflows cannot be executed")
        steps = parse_steps(workflow.steps)

        input_data = dict(input_data or {})
        execution = WorkflowExecution(
            workflow_id=workflow.id,
            workflow_version=workflow.version,
            status="pending",
            trigger=trigger,
            input_data=input_data,
            steps=copy.deepcopy(workflow.steps),
            steps_total=len(steps),
            execution_log=[],
            bindings={
                "workflow_id": workflow.id,
                "execution_time": utcnow().isoformat(),
                **input_data,
            },
        )
        await self.history.create(execution)
        logger.info(f"Execution {execution.id} created for workflow {workflow_id} ({trigger}, {len(steps)} steps)")

        if background:
            self._spawn(self.run_execution(execution.id))
        return execution

    async def resume_execution(self, execution_id: str, background: bool = True):
        """Continue an execution whose long wait has been claimed by the scheduler."""
        if background:
            self._spawn(self.run_execution(execution_id, resumed=True))
            return None
        return await self.run_execution(execution_id, resumed=True)

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Execution task crashed: {task.exception()!r}")

    async def drain(self):
        """Wait for every execution task started by this executor."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ─── Running ───────────────────────────────────────────────

    async def run_execution(self, execution_id: str, resumed: bool = False) -> WorkflowExecution:
        execution = await self.history.get(execution_id)
        if execution.is_terminal:
            logger.warning(f"Execution {execution_id} is already {execution.status}, not running it again")
            return execution

        if execution.status == "pending":
            execution = await self.history.update(execution_id, {"status": "running", "started_at": utcnow()})
            await self._emit(execution_id, {
                "type": "execution_started",
                "execution_id": execution_id,
                "steps_total": execution.steps_total,
            })

        bindings = dict(execution.bindings or {})
        counters = {
            "steps_completed": execution.steps_completed,
            "contacts_processed": execution.contacts_processed,
            "emails_sent": execution.emails_sent,
        }
        ctx = ExecutionContext(
            execution_id=execution_id,
            workflow_id=execution.workflow_id,
            bindings=bindings,
            ai=self.ai,
            delivery=self.delivery,
            http_client=self.http_client,
        )
        if self.wait_inline_max_ms is not None:
            ctx.wait_inline_max_ms = self.wait_inline_max_ms

        first_index = execution.current_step_index
        for index in range(first_index, len(execution.steps)):
            raw = execution.steps[index]
            try:
                step = parse_step(raw)
            except DefinitionError as e:
                entry = _log_entry(raw.get("id"), raw.get("type"), raw.get("name"), "failed", error=e.message)
                return await self._finish(execution, "failed", counters, bindings, [entry], error=e.message)

            ctx.unresolved = []
            ctx.resumed = resumed and index == first_index
            result = await self._dispatch(step, ctx)

            entries = []
            if ctx.unresolved:
                logger.warning(
                    f"Execution {execution_id} step {step.id}: unresolved template tokens {ctx.unresolved}"
                )
                entries.append(_log_entry(
                    step.id, step.type, step.name, "warning", output={"unresolved_tokens": list(ctx.unresolved)},
                ))

            counters["contacts_processed"] += result.contacts_processed
            counters["emails_sent"] += result.emails_sent

            if result.status == StepStatus.COMPLETED:
                bindings.update(result.variables)
                counters["steps_completed"] += 1
                entries.append(_log_entry(step.id, step.type, step.name, "completed", output=result.output))
                await self.history.update(
                    execution_id,
                    {**counters, "bindings": bindings, "current_step_index": index + 1},
                    entries,
                )
                await self._emit(execution_id, {
                    "type": "step_completed",
                    "execution_id": execution_id,
                    "step_id": step.id,
                    "step_type": step.type,
                    "output": result.output,
                })
                continue

            if result.status == StepStatus.FAILED:
                logger.error(f"Execution {execution_id} step {step.id} ({step.type}) failed: {result.error}")
                entries.append(_log_entry(
                    step.id, step.type, step.name, "failed", output=result.output, error=result.error,
                ))
                await self._emit(execution_id, {
                    "type": "step_failed",
                    "execution_id": execution_id,
                    "step_id": step.id,
                    "error": result.error,
                })
                message = f"Step {step.id} ({step.type}) failed: {result.error}"
                return await self._finish(execution, "failed", counters, bindings, entries, error=message)

            if result.status == StepStatus.SKIP_REST:
                entries.append(_log_entry(step.id, step.type, step.name, "skipped_rest", output=result.output))
                logger.info(f"Execution {execution_id}: condition {step.id} is false, skipping remaining steps")
                return await self._finish(execution, "completed", counters, bindings, entries)

            # Suspended on a long wait: park the execution until the scheduler resumes it
            entries.append(_log_entry(step.id, step.type, step.name, "waiting", output=result.output))
            parked = await self.history.update(
                execution_id,
                {**counters, "bindings": bindings, "current_step_index": index, "resume_at": result.resume_at},
                entries,
            )
            await self._emit(execution_id, {
                "type": "execution_waiting",
                "execution_id": execution_id,
                "step_id": step.id,
                "resume_at": result.resume_at.isoformat(),
            })
            logger.info(f"Execution {execution_id} waiting on {step.id} until {result.resume_at.isoformat()}")
            return parked

        return await self._finish(execution, "completed", counters, bindings, [])

    async def _dispatch(self, step, ctx: ExecutionContext) -> StepResult:
        handler = HANDLERS[step.type]
        try:
            return await handler(step, ctx)
        except (StepRuntimeError, AIServiceError, DeliveryError) as e:
            return StepResult(StepStatus.FAILED, error=getattr(e, "message", None) or str(e))
        except Exception as e:
            logger.exception(f"Unexpected error in step {step.id} ({step.type})")
            return StepResult(StepStatus.FAILED, error=f"Unexpected error: {e}")

    async def _finish(
        self,
        execution: WorkflowExecution,
        status: str,
        counters: dict,
        bindings: dict,
        entries: list[dict],
        error: Optional[str] = None,
    ) -> WorkflowExecution:
        completed_at = utcnow()
        started_at = execution.started_at or completed_at
        fields = {
            **counters,
            "status": status,
            "completed_at": completed_at,
            "execution_time_ms": int((completed_at - started_at).total_seconds() * 1000),
            "bindings": bindings,
            "results": self._results(bindings, counters, execution.input_data or {}),
        }
        if error:
            fields["error_message"] = error

        finished = await self.history.update(execution.id, fields, entries)
        await self._record_outcome(execution.workflow_id, success=status == "completed")

        await self._emit(execution.id, {
            "type": f"execution_{status}",
            "execution_id": execution.id,
            "steps_completed": finished.steps_completed,
            "error": error,
        })
        if status == "completed":
            logger.info(
                f"Execution {execution.id} completed: {finished.steps_completed}/{finished.steps_total} steps, "
                f"{finished.contacts_processed} contacts, {finished.emails_sent} emails"
            )
        else:
            logger.warning(f"Execution {execution.id} failed: {error}")
        return finished

    @staticmethod
    def _results(bindings: dict, counters: dict, input_data: dict) -> dict:
        variables = {
            k: v for k, v in bindings.items()
            if k not in ("workflow_id", "execution_time") and not (k in input_data and input_data[k] == v)
        }
        return {"variables": variables, "summary": dict(counters)}

    async def _record_outcome(self, workflow_id: str, success: bool):
        values = {"total_executions": Workflow.total_executions + 1}
        if success:
            values["successful_executions"] = Workflow.successful_executions + 1
            values["last_executed_at"] = utcnow()
        async with self._session_factory() as db:
            await db.execute(update(Workflow).where(Workflow.id == workflow_id).values(**values))
            await db.commit()
