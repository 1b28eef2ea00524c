"""Workflow definition store: user workflows, templates and clones."""

import copy
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autoflow.exceptions import ConflictError, DefinitionError, WorkflowNotFoundError
from autoflow.models.workflow import Workflow
from autoflow.schemas.workflow import WorkflowCreate, WorkflowUpdate

logger = logging.getLogger(__name__)

SYSTEM_OWNER = "system"


def _dump_steps(steps) -> list[dict]:
    return [s.model_dump() for s in steps]


async def save_workflow(db: AsyncSession, req: WorkflowCreate, owner: str) -> Workflow:
    workflow = Workflow(
        owner=owner,
        name=req.name,
        description=req.description,
        category=req.category,
        status=req.status,
        is_template=req.is_template,
        steps=_dump_steps(req.steps),
        trigger_type=req.trigger_type,
        schedule_cron=req.schedule_cron,
    )
    db.add(workflow)
    await db.commit()
    await db.refresh(workflow)
    logger.info(f"Saved workflow {workflow.id} ({workflow.name}) for {owner}")
    return workflow


async def load_workflow(db: AsyncSession, workflow_id: str, owner: str | None = None) -> Workflow:
    """Fetch a workflow; when ``owner`` is given the row must belong to them."""
    query = select(Workflow).where(Workflow.id == workflow_id)
    if owner is not None:
        query = query.where(Workflow.owner == owner)
    result = await db.execute(query)
    workflow = result.scalar_one_or_none()
    if not workflow:
        raise WorkflowNotFoundError(workflow_id)
    return workflow


async def list_workflows(db: AsyncSession, owner: str, include_archived: bool = False) -> list[Workflow]:
    query = (
        select(Workflow)
        .where(Workflow.owner == owner, Workflow.is_template.is_(False))
        .order_by(Workflow.created_at.desc())
    )
    if not include_archived:
        query = query.where(Workflow.status != "archived")
    result = await db.execute(query)
    return list(result.scalars().all())


async def update_workflow(db: AsyncSession, workflow_id: str, req: WorkflowUpdate, owner: str) -> Workflow:
    workflow = await load_workflow(db, workflow_id, owner)

    changes = req.model_dump(exclude_unset=True)
    if "steps" in changes:
        new_steps = _dump_steps(req.steps or [])
        if new_steps != workflow.steps:
            workflow.steps = new_steps
            workflow.version += 1
        changes.pop("steps")

    for field, value in changes.items():
        setattr(workflow, field, value)

    await db.commit()
    await db.refresh(workflow)
    return workflow


async def archive_workflow(db: AsyncSession, workflow_id: str, owner: str) -> Workflow:
    """Soft delete. Past executions keep pointing at the row."""
    workflow = await load_workflow(db, workflow_id, owner)
    workflow.status = "archived"
    await db.commit()
    await db.refresh(workflow)
    logger.info(f"Archived workflow {workflow_id}")
    return workflow


async def list_templates(db: AsyncSession, category: str | None = None) -> list[Workflow]:
    query = (
        select(Workflow)
        .where(Workflow.is_template.is_(True), Workflow.status != "archived")
        .order_by(Workflow.created_at)
    )
    if category:
        query = query.where(Workflow.category == category)
    result = await db.execute(query)
    return list(result.scalars().all())


async def clone_template(db: AsyncSession, template_id: str, owner: str, name: str | None = None) -> Workflow:
    template = await load_workflow(db, template_id)
    if not template.is_template:
        raise DefinitionError(f"Workflow {template_id} is not a template")

    workflow = Workflow(
        owner=owner,
        name=name or template.name,
        description=template.description,
        category=template.category,
        status="draft",
        is_template=False,
        steps=copy.deepcopy(template.steps),
        trigger_type="manual",
        source_template_id=template.id,
    )
    db.add(workflow)
    await db.commit()
    await db.refresh(workflow)
    logger.info(f"Cloned template {template_id} into workflow {workflow.id} for {owner}")
    return workflow


async def publish_template(db: AsyncSession, workflow_id: str, owner: str, category: str | None = None) -> Workflow:
    """Copy one of the caller's workflows into the shared template catalog."""
    workflow = await load_workflow(db, workflow_id, owner)
    if not workflow.steps:
        raise DefinitionError("Workflow has no steps defined")

    result = await db.execute(
        select(Workflow).where(Workflow.is_template.is_(True), Workflow.name == workflow.name)
    )
    if result.scalars().first():
        raise ConflictError("A template with this name already exists")

    template = Workflow(
        owner=owner,
        name=workflow.name,
        description=workflow.description,
        category=category or workflow.category,
        status="active",
        is_template=True,
        steps=copy.deepcopy(workflow.steps),
    )
    db.add(template)
    await db.commit()
    await db.refresh(template)
    return template
