"""Execution history store.

Every mutation of a ``WorkflowExecution`` after creation goes through
:meth:`ExecutionHistoryStore.update`, which enforces the lifecycle:
statuses only move forward, terminal rows are frozen, and the execution log
can only grow.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select, update

from autoflow.config import get_settings
from autoflow.db.database import async_session, utcnow
from autoflow.exceptions import ExecutionNotFoundError, ExecutionStateError
from autoflow.models.workflow_execution import WorkflowExecution

logger = logging.getLogger(__name__)
settings = get_settings()

MUTABLE_FIELDS = {
    "status",
    "started_at",
    "completed_at",
    "results",
    "error_message",
    "steps_completed",
    "contacts_processed",
    "emails_sent",
    "execution_time_ms",
    "bindings",
    "current_step_index",
    "resume_at",
}

ALLOWED_TRANSITIONS = {
    "pending": {"pending", "running"},
    "running": {"running", "completed", "failed"},
}


class ExecutionHistoryStore:
    def __init__(self, session_factory=async_session):
        self._session_factory = session_factory

    async def create(self, execution: WorkflowExecution) -> str:
        async with self._session_factory() as db:
            db.add(execution)
            await db.commit()
            await db.refresh(execution)
            return execution.id

    async def get(self, execution_id: str) -> WorkflowExecution:
        async with self._session_factory() as db:
            execution = await db.get(WorkflowExecution, execution_id)
            if not execution:
                raise ExecutionNotFoundError(execution_id)
            return execution

    async def update(
        self,
        execution_id: str,
        fields: dict | None = None,
        log_entries: list[dict] | None = None,
    ) -> WorkflowExecution:
        fields = dict(fields or {})
        if "execution_log" in fields:
            raise ExecutionStateError("execution_log is append-only; pass log_entries instead")
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable on an execution: {sorted(unknown)}")

        async with self._session_factory() as db:
            execution = await db.get(WorkflowExecution, execution_id)
            if not execution:
                raise ExecutionNotFoundError(execution_id)
            if execution.is_terminal:
                raise ExecutionStateError(f"Execution {execution_id} is already {execution.status}")

            new_status = fields.get("status")
            if new_status and new_status not in ALLOWED_TRANSITIONS[execution.status]:
                raise ExecutionStateError(
                    f"Execution {execution_id} cannot move from {execution.status} to {new_status}"
                )

            for field, value in fields.items():
                setattr(execution, field, value)
            if log_entries:
                execution.execution_log = [*(execution.execution_log or []), *log_entries]
            execution.last_progress_at = utcnow()

            await db.commit()
            await db.refresh(execution)
            return execution

    async def list_by_workflow(self, workflow_id: str, limit: int | None = None) -> list[WorkflowExecution]:
        """Newest first."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(WorkflowExecution)
                .where(WorkflowExecution.workflow_id == workflow_id)
                .order_by(WorkflowExecution.created_at.desc(), WorkflowExecution.id.desc())
                .limit(limit or settings.EXECUTION_HISTORY_LIMIT)
            )
            return list(result.scalars().all())

    async def claim_due_resumptions(self, now: datetime | None = None) -> list[str]:
        """Take ownership of parked executions whose wait is over.

        Clearing ``resume_at`` is a conditional update, so two pollers can
        never both claim the same execution.
        """
        now = now or utcnow()
        claimed = []
        async with self._session_factory() as db:
            result = await db.execute(
                select(WorkflowExecution.id).where(
                    WorkflowExecution.status == "running",
                    WorkflowExecution.resume_at.isnot(None),
                    WorkflowExecution.resume_at <= now,
                )
            )
            for execution_id in result.scalars().all():
                outcome = await db.execute(
                    update(WorkflowExecution)
                    .where(WorkflowExecution.id == execution_id, WorkflowExecution.resume_at.isnot(None))
                    .values(resume_at=None, last_progress_at=now)
                )
                if outcome.rowcount == 1:
                    claimed.append(execution_id)
            await db.commit()
        return claimed

    async def find_stuck(self, older_than: timedelta | None = None) -> list[WorkflowExecution]:
        """Executions that stopped making progress without reaching a terminal status."""
        cutoff = utcnow() - (older_than or timedelta(minutes=settings.STUCK_EXECUTION_MINUTES))
        async with self._session_factory() as db:
            result = await db.execute(
                select(WorkflowExecution)
                .where(
                    or_(
                        and_(WorkflowExecution.status == "pending", WorkflowExecution.created_at < cutoff),
                        and_(
                            WorkflowExecution.status == "running",
                            or_(
                                WorkflowExecution.last_progress_at.is_(None),
                                WorkflowExecution.last_progress_at < cutoff,
                            ),
                            or_(WorkflowExecution.resume_at.is_(None), WorkflowExecution.resume_at < cutoff),
                        ),
                    )
                )
                .order_by(WorkflowExecution.created_at)
            )
            return list(result.scalars().all())
