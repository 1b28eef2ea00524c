from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from autoflow.schemas.steps import StepDefinition

WorkflowStatus = Literal["draft", "active", "archived"]
TriggerType = Literal["manual", "scheduled", "webhook"]


def _unique_step_ids(steps: list[StepDefinition] | None):
    if steps is None:
        return steps
    seen = set()
    for step in steps:
        if step.id in seen:
            raise ValueError(f"duplicate step id '{step.id}'")
        seen.add(step.id)
    return steps


def _check_cron(trigger_type: str | None, schedule_cron: str | None):
    if trigger_type == "scheduled" and (not schedule_cron or len(schedule_cron.split()) != 5):
        raise ValueError("scheduled workflows need a five-field schedule_cron")


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    category: str = "custom"
    status: WorkflowStatus = "draft"
    is_template: bool = False
    steps: list[StepDefinition] = Field(default_factory=list)
    trigger_type: TriggerType = "manual"
    schedule_cron: str | None = None

    @field_validator("steps")
    @classmethod
    def unique_step_ids(cls, steps):
        return _unique_step_ids(steps)

    @model_validator(mode="after")
    def check_schedule(self):
        _check_cron(self.trigger_type, self.schedule_cron)
        return self


class WorkflowUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    category: str | None = None
    status: WorkflowStatus | None = None
    steps: list[StepDefinition] | None = None
    trigger_type: TriggerType | None = None
    schedule_cron: str | None = None

    @field_validator("steps")
    @classmethod
    def unique_step_ids(cls, steps):
        return _unique_step_ids(steps)

    @model_validator(mode="after")
    def check_schedule(self):
        _check_cron(self.trigger_type, self.schedule_cron)
        return self


class WorkflowResponse(BaseModel):
    id: str
    owner: str
    name: str
    description: str | None
    status: str
    is_template: bool
    category: str
    steps: list[dict]
    version: int
    trigger_type: str
    schedule_cron: str | None
    source_template_id: str | None = None
    total_executions: int
    successful_executions: int
    last_executed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ExecutionSummary(BaseModel):
    id: str
    workflow_id: str
    workflow_version: int
    status: str
    trigger: str
    steps_total: int
    steps_completed: int
    contacts_processed: int
    emails_sent: int
    execution_time_ms: int | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class ExecutionResponse(ExecutionSummary):
    input_data: dict
    steps: list[dict]
    execution_log: list[dict]
    results: dict | None = None
    resume_at: datetime | None = None
    current_step_index: int = 0
