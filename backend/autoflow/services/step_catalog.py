"""Registry of the six step kinds and the checks applied to their configuration."""

from dataclasses import dataclass, field

from pydantic import BaseModel, TypeAdapter, ValidationError

from autoflow.exceptions import DefinitionError
from autoflow.schemas.steps import (
    AIAnalysisConfig,
    AIContentConfig,
    ConditionConfig,
    DataSourceConfig,
    EmailSendConfig,
    Step,
    WaitDelayConfig,
)

STEP_KINDS: dict[str, type[BaseModel]] = {
    "data_source": DataSourceConfig,
    "ai_content": AIContentConfig,
    "ai_analysis": AIAnalysisConfig,
    "condition": ConditionConfig,
    "email_send": EmailSendConfig,
    "wait_delay": WaitDelayConfig,
}

DESCRIPTIONS = {
    "data_source": "Load contact records from an upload, a spreadsheet export or an API endpoint",
    "ai_content": "Generate text from a prompt template in a given brand voice",
    "ai_analysis": "Segment and score records with the AI analysis capability",
    "condition": "Evaluate a boolean expression; a false result ends the run successfully",
    "email_send": "Send one email per record through Resend, SendGrid or Mailgun",
    "wait_delay": "Pause the run for a number of milliseconds",
}

_step_adapter = TypeAdapter(Step)


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def _format_errors(exc: ValidationError, prefix: str = "") -> list[str]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        errors.append(f"{prefix}{loc}: {err['msg']}" if loc else f"{prefix}{err['msg']}")
    return errors


def list_kinds() -> list[dict]:
    return [{"type": kind, "description": DESCRIPTIONS[kind]} for kind in STEP_KINDS]


def validate(step_type: str, config: dict) -> ValidationResult:
    model = STEP_KINDS.get(step_type)
    if model is None:
        return ValidationResult(False, [f"Unknown step type '{step_type}'"])
    if not isinstance(config, dict):
        return ValidationResult(False, ["config must be an object"])
    try:
        model.model_validate(config)
    except ValidationError as e:
        return ValidationResult(False, _format_errors(e))
    return ValidationResult(True)


def describe(step_type: str) -> dict:
    model = STEP_KINDS.get(step_type)
    if model is None:
        raise DefinitionError(f"Unknown step type '{step_type}'")
    return {
        "type": step_type,
        "description": DESCRIPTIONS[step_type],
        "schema": model.model_json_schema(),
    }


def parse_step(raw: dict) -> Step:
    step_id = raw.get("id", "?") if isinstance(raw, dict) else "?"
    if not isinstance(raw, dict):
        raise DefinitionError("Step definition must be an object")
    if raw.get("type") not in STEP_KINDS:
        raise DefinitionError(f"Step {step_id}: unknown step type '{raw.get('type')}'")
    try:
        return _step_adapter.validate_python(raw)
    except ValidationError as e:
        errors = _format_errors(e, prefix=f"Step {step_id}: ")
        raise DefinitionError(errors[0], errors) from e


def parse_steps(raw_steps: list) -> list[Step]:
    """Parse a whole step list, collecting every problem before giving up."""
    if not raw_steps:
        raise DefinitionError("Workflow has no steps defined")

    steps: list[Step] = []
    errors: list[str] = []
    seen: set[str] = set()
    for raw in raw_steps:
        try:
            step = parse_step(raw)
        except DefinitionError as e:
            errors.extend(e.errors)
            continue
        if step.id in seen:
            errors.append(f"Step {step.id}: duplicate step id")
        seen.add(step.id)
        steps.append(step)

    if errors:
        raise DefinitionError(f"Workflow definition is invalid ({len(errors)} problem(s))", errors)
    return steps
