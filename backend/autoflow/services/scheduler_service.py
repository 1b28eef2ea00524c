import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from autoflow.config import get_settings
from autoflow.db.database import async_session
from autoflow.exceptions import AutoflowError
from autoflow.models.workflow import Workflow

logger = logging.getLogger(__name__)
settings = get_settings()

scheduler = AsyncIOScheduler()

RESUME_JOB_ID = "resume_waiting_executions"
STUCK_JOB_ID = "report_stuck_executions"

_executor = None


def get_executor():
    """Executor shared by the API and the scheduler jobs."""
    global _executor
    if _executor is None:
        from autoflow.services.executor_service import ExecutorService
        _executor = ExecutorService()
    return _executor


def set_executor(executor):
    global _executor
    _executor = executor


async def execute_scheduled_workflow(workflow_id: str):
    try:
        execution = await get_executor().start_execution(workflow_id, trigger="scheduled")
    except AutoflowError as e:
        logger.warning(f"Scheduled workflow {workflow_id} was not started: {e.message}")
        return
    logger.info(f"Scheduled execution {execution.id} started for workflow {workflow_id}")


async def resume_waiting_executions():
    executor = get_executor()
    claimed = await executor.history.claim_due_resumptions()
    for execution_id in claimed:
        logger.info(f"Resuming execution {execution_id} after wait")
        await executor.resume_execution(execution_id)
    return claimed


async def report_stuck_executions():
    stuck = await get_executor().history.find_stuck()
    for execution in stuck:
        logger.warning(
            f"Execution {execution.id} of workflow {execution.workflow_id} looks stuck "
            f"({execution.status}, last progress {execution.last_progress_at})"
        )
    return stuck


async def load_scheduled_workflows():
    async with async_session() as db:
        result = await db.execute(
            select(Workflow).where(
                Workflow.trigger_type == "scheduled",
                Workflow.status == "active",
                Workflow.is_template.is_(False),
                Workflow.schedule_cron.isnot(None),
            )
        )
        workflows = result.scalars().all()

        for workflow in workflows:
            add_workflow_schedule(workflow.id, workflow.schedule_cron)
        logger.info(f"Loaded {len(workflows)} scheduled workflows")


def start_background_jobs():
    scheduler.add_job(
        resume_waiting_executions,
        trigger=IntervalTrigger(seconds=settings.RESUME_POLL_SECONDS),
        id=RESUME_JOB_ID,
        replace_existing=True,
    )
    scheduler.add_job(
        report_stuck_executions,
        trigger=IntervalTrigger(minutes=max(1, settings.STUCK_EXECUTION_MINUTES // 2)),
        id=STUCK_JOB_ID,
        replace_existing=True,
    )


def add_workflow_schedule(workflow_id: str, cron_expression: str):
    job_id = f"workflow_{workflow_id}"
    try:
        # Remove existing job if any
        if scheduler.get_job(job_id):
            scheduler.remove_job(job_id)

        # Parse cron expression (minute hour day_of_month month day_of_week)
        parts = cron_expression.split()
        if len(parts) == 5:
            trigger = CronTrigger(
                minute=parts[0],
                hour=parts[1],
                day=parts[2],
                month=parts[3],
                day_of_week=parts[4],
            )
            scheduler.add_job(
                execute_scheduled_workflow,
                trigger=trigger,
                args=[workflow_id],
                id=job_id,
                replace_existing=True,
            )
            logger.info(f"Scheduled workflow {workflow_id} with cron: {cron_expression}")
    except ValueError as e:
        logger.error(f"Failed to schedule workflow {workflow_id}: {e}")


def remove_workflow_schedule(workflow_id: str):
    job_id = f"workflow_{workflow_id}"
    if scheduler.get_job(job_id):
        scheduler.remove_job(job_id)


def sync_workflow_schedule(workflow: Workflow):
    """Keep the cron job for ``workflow`` in line with its trigger settings."""
    if (
        workflow.trigger_type == "scheduled"
        and workflow.status == "active"
        and not workflow.is_template
        and workflow.schedule_cron
    ):
        add_workflow_schedule(workflow.id, workflow.schedule_cron)
    else:
        remove_workflow_schedule(workflow.id)
