"""Typed step definitions.

A saved workflow keeps its steps as plain ``StepDefinition`` envelopes so that
drafts can hold half-finished configuration. Before anything runs, each
envelope is parsed into one member of the ``Step`` tagged union, which is
where configuration is actually checked.
"""

import uuid
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator

from autoflow.services.condition_service import check_expression


class Position(BaseModel):
    x: float = 0
    y: float = 0


class StepDefinition(BaseModel):
    id: str = Field(default_factory=lambda: f"step_{uuid.uuid4().hex[:8]}", min_length=1)
    type: str
    name: str = ""
    config: dict = Field(default_factory=dict)
    position: Position = Field(default_factory=Position)


# ─── Configs ───────────────────────────────────────────────────

SOURCE_TYPE_ALIASES = {
    "csv_upload": "upload",
    "csv": "upload",
    "google_sheets": "spreadsheet",
    "sheets": "spreadsheet",
    "api_endpoint": "api",
}


class DataSourceConfig(BaseModel):
    source_type: Literal["upload", "spreadsheet", "api"]
    required_fields: list[str]
    records: list[dict] | None = None
    csv_data: str | None = None
    url: str | None = None
    input_key: str = "contacts"  # binding read when nothing is supplied inline
    output_key: str = "contacts"

    @field_validator("source_type", mode="before")
    @classmethod
    def normalize_source_type(cls, value):
        if isinstance(value, str):
            return SOURCE_TYPE_ALIASES.get(value, value)
        return value


class AIContentConfig(BaseModel):
    template: str = Field(min_length=1)
    brand_voice: str
    output_key: str = "generated_content"
    per_record: bool = False
    records_key: str = "contacts"


class AIAnalysisConfig(BaseModel):
    analysis_prompt: str = Field(min_length=1)
    data_key: str = "contacts"
    output_key: str = "analysis"


class ConditionConfig(BaseModel):
    condition_logic: str

    @field_validator("condition_logic")
    @classmethod
    def check_syntax(cls, value: str) -> str:
        errors = check_expression(value)
        if errors:
            raise ValueError(errors[0])
        return value


class EmailSendConfig(BaseModel):
    email_service: Literal["resend", "sendgrid", "mailgun"]
    from_email: str = Field(min_length=1)
    from_name: str | None = None
    api_key: str | None = None  # falls back to the provider key in settings
    domain: str | None = None  # mailgun only
    records_key: str = "contacts"
    recipient_field: str = "email"
    subject_template: str = "A message for {{name}}"
    body_template: str = "{{generated_content}}"
    fail_on_delivery_error: bool = False


class WaitDelayConfig(BaseModel):
    duration: int = Field(ge=0)  # milliseconds


# ─── Steps ─────────────────────────────────────────────────────

class _StepBase(BaseModel):
    id: str = Field(min_length=1)
    name: str = ""
    position: Position = Field(default_factory=Position)


class DataSourceStep(_StepBase):
    type: Literal["data_source"]
    config: DataSourceConfig


class AIContentStep(_StepBase):
    type: Literal["ai_content"]
    config: AIContentConfig


class AIAnalysisStep(_StepBase):
    type: Literal["ai_analysis"]
    config: AIAnalysisConfig


class ConditionStep(_StepBase):
    type: Literal["condition"]
    config: ConditionConfig


class EmailSendStep(_StepBase):
    type: Literal["email_send"]
    config: EmailSendConfig


class WaitDelayStep(_StepBase):
    type: Literal["wait_delay"]
    config: WaitDelayConfig


Step = Annotated[
    Union[DataSourceStep, AIContentStep, AIAnalysisStep, ConditionStep, EmailSendStep, WaitDelayStep],
    Field(discriminator="type"),
]
