"""Tests for the execution history store."""

from datetime import timedelta

import pytest
import pytest_asyncio

from autoflow.db.database import utcnow
from autoflow.exceptions import ExecutionNotFoundError, ExecutionStateError
from autoflow.models.workflow_execution import WorkflowExecution
from autoflow.services.history_service import ExecutionHistoryStore

from conftest import data_source_step


@pytest.fixture
def store(session_factory):
    return ExecutionHistoryStore(session_factory)


@pytest_asyncio.fixture
async def workflow(make_workflow):
    return await make_workflow([data_source_step()])


async def _new_execution(store, workflow, **fields) -> str:
    return await store.create(WorkflowExecution(workflow_id=workflow.id, steps=workflow.steps, **fields))


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store, workflow):
        execution_id = await _new_execution(store, workflow)
        execution = await store.get(execution_id)
        assert execution.status == "pending"
        assert execution.execution_log == []

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        with pytest.raises(ExecutionNotFoundError):
            await store.get("nope")

    @pytest.mark.asyncio
    async def test_log_only_grows(self, store, workflow):
        execution_id = await _new_execution(store, workflow)
        await store.update(execution_id, {"status": "running"}, log_entries=[{"step_id": "a"}])
        execution = await store.update(execution_id, log_entries=[{"step_id": "b"}])

        assert [e["step_id"] for e in execution.execution_log] == ["a", "b"]
        assert execution.last_progress_at is not None

    @pytest.mark.asyncio
    async def test_log_cannot_be_replaced(self, store, workflow):
        execution_id = await _new_execution(store, workflow)
        with pytest.raises(ExecutionStateError):
            await store.update(execution_id, {"execution_log": []})

    @pytest.mark.asyncio
    async def test_unknown_field(self, store, workflow):
        execution_id = await _new_execution(store, workflow)
        with pytest.raises(ValueError):
            await store.update(execution_id, {"workflow_id": "other"})

    @pytest.mark.asyncio
    async def test_illegal_transition(self, store, workflow):
        execution_id = await _new_execution(store, workflow)
        with pytest.raises(ExecutionStateError):
            await store.update(execution_id, {"status": "completed"})

    @pytest.mark.asyncio
    async def test_terminal_rows_are_frozen(self, store, workflow):
        execution_id = await _new_execution(store, workflow)
        await store.update(execution_id, {"status": "running"})
        await store.update(execution_id, {"status": "failed", "error_message": "boom"})

        with pytest.raises(ExecutionStateError):
            await store.update(execution_id, log_entries=[{"step_id": "late"}])
        with pytest.raises(ExecutionStateError):
            await store.update(execution_id, {"status": "running"})

        execution = await store.get(execution_id)
        assert execution.status == "failed"
        assert execution.execution_log == []


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_newest_first_with_limit(self, store, workflow):
        ids = [await _new_execution(store, workflow) for _ in range(4)]

        listed = await store.list_by_workflow(workflow.id)
        assert [e.id for e in listed] == list(reversed(ids))

        limited = await store.list_by_workflow(workflow.id, limit=2)
        assert [e.id for e in limited] == [ids[3], ids[2]]

    @pytest.mark.asyncio
    async def test_claim_due_resumptions_claims_once(self, store, workflow):
        due = await _new_execution(store, workflow, status="running", resume_at=utcnow() - timedelta(seconds=1))
        await _new_execution(store, workflow, status="running", resume_at=utcnow() + timedelta(hours=1))

        assert await store.claim_due_resumptions() == [due]
        assert await store.claim_due_resumptions() == []
        assert (await store.get(due)).resume_at is None

    @pytest.mark.asyncio
    async def test_find_stuck(self, store, workflow):
        old = utcnow() - timedelta(hours=2)
        stuck = await _new_execution(store, workflow, status="running", last_progress_at=old)
        await _new_execution(store, workflow, status="running", last_progress_at=utcnow())
        await _new_execution(store, workflow, status="completed", last_progress_at=old)
        # parked on a long wait that is not yet due
        await _new_execution(
            store, workflow, status="running", last_progress_at=old, resume_at=utcnow() + timedelta(days=1)
        )

        found = await store.find_stuck(timedelta(minutes=30))
        assert [e.id for e in found] == [stuck]
