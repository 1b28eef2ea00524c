"""One handler per step kind.

A handler receives the parsed step and the live :class:`ExecutionContext`
and returns a :class:`StepResult` naming what happens next. Handlers do not
touch the database; the executor owns persistence and counters.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from autoflow.config import get_settings
from autoflow.db.database import utcnow
from autoflow.exceptions import StepRuntimeError
from autoflow.schemas.steps import (
    AIAnalysisStep,
    AIContentStep,
    ConditionStep,
    DataSourceStep,
    EmailSendStep,
    WaitDelayStep,
)
from autoflow.services.ai_service import AICapability
from autoflow.services.condition_service import ConditionError, evaluate
from autoflow.services.delivery_service import DeliveryCredentials, DeliveryError, DeliveryService, EmailMessage
from autoflow.services.source_service import load_records, split_records
from autoflow.services.template_engine import render, unresolved_tokens

logger = logging.getLogger(__name__)
settings = get_settings()


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIP_REST = "skipped_rest"
    SUSPENDED = "waiting"


@dataclass
class StepResult:
    status: StepStatus
    variables: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    contacts_processed: int = 0
    emails_sent: int = 0
    resume_at: Optional[datetime] = None


@dataclass
class ExecutionContext:
    execution_id: str
    workflow_id: str
    bindings: dict[str, Any]
    ai: AICapability
    delivery: DeliveryService
    http_client: Optional[httpx.AsyncClient] = None
    wait_inline_max_ms: int = field(default_factory=lambda: settings.WAIT_INLINE_MAX_MS)
    resumed: bool = False  # the current step is a wait_delay being picked up after suspension
    unresolved: list[str] = field(default_factory=list)

    def render(self, template: str, extra: Optional[dict] = None) -> str:
        """Render against the current bindings, remembering any token left unbound."""
        scope = {**self.bindings, **extra} if extra else self.bindings
        for name in unresolved_tokens(template, scope):
            if name not in self.unresolved:
                self.unresolved.append(name)
        return render(template, scope)


def record_scope(record: Any) -> dict:
    """Per-record bindings: the record's own fields plus the conventional contact_* aliases."""
    if not isinstance(record, dict):
        return {}
    scope = dict(record)
    if record.get("name") is not None:
        scope.setdefault("contact_name", record["name"])
    if record.get("email") is not None:
        scope.setdefault("contact_email", record["email"])
    return scope


def _records(ctx: ExecutionContext, key: str) -> list:
    records = ctx.bindings.get(key)
    if not isinstance(records, list):
        raise StepRuntimeError(f"No records found under '{key}'")
    return records


# ─── Handlers ──────────────────────────────────────────────────

async def run_data_source(step: DataSourceStep, ctx: ExecutionContext) -> StepResult:
    config = step.config
    if config.url:
        config = config.model_copy(update={"url": ctx.render(config.url)})

    records = await load_records(config, ctx.bindings, ctx.http_client)
    accepted, rejected = split_records(records, config.required_fields)
    if rejected:
        logger.warning(
            f"Execution {ctx.execution_id}: {len(rejected)} record(s) missing {config.required_fields} were rejected"
        )

    return StepResult(
        StepStatus.COMPLETED,
        variables={
            config.output_key: accepted,
            "data_count": len(accepted),
            "data_source": config.source_type,
            "records_rejected": len(rejected),
        },
        output={"source_type": config.source_type, "records_loaded": len(accepted), "records_rejected": len(rejected)},
        contacts_processed=len(accepted),
    )


async def run_ai_content(step: AIContentStep, ctx: ExecutionContext) -> StepResult:
    config = step.config
    voice = ctx.render(config.brand_voice)

    if config.per_record:
        updated = []
        for record in _records(ctx, config.records_key):
            prompt = ctx.render(config.template, record_scope(record))
            text = await ctx.ai.generate(prompt, {"brand_voice": voice, "record": record})
            updated.append({**record, config.output_key: text} if isinstance(record, dict) else record)
        preview = updated[0].get(config.output_key, "") if updated and isinstance(updated[0], dict) else ""
        return StepResult(
            StepStatus.COMPLETED,
            variables={config.records_key: updated, "content_generated": len(updated)},
            output={"content_generated": len(updated), "brand_voice": voice, "preview": str(preview)[:200]},
        )

    text = await ctx.ai.generate(ctx.render(config.template), {"brand_voice": voice})
    return StepResult(
        StepStatus.COMPLETED,
        variables={config.output_key: text, "content_generated": 1},
        output={"content_generated": 1, "brand_voice": voice, "preview": text[:200]},
    )


def _score(contact: dict) -> float:
    try:
        return float(contact.get("score", 0))
    except (TypeError, ValueError):
        return 0.0


async def run_ai_analysis(step: AIAnalysisStep, ctx: ExecutionContext) -> StepResult:
    config = step.config
    data = _records(ctx, config.data_key)
    result = await ctx.ai.analyze(ctx.render(config.analysis_prompt), data)
    if not isinstance(result, dict):
        raise StepRuntimeError("AI analysis did not return a structured result")

    priority = [c for c in result.get("priority_contacts") or [] if isinstance(c, dict)]
    high_priority = [c for c in priority if _score(c) > 80]
    segments = result.get("segments") or []

    return StepResult(
        StepStatus.COMPLETED,
        variables={
            config.output_key: result,
            "analysis_complete": True,
            "segments_count": len(segments),
            "high_priority_count": len(high_priority),
            "priority_contacts": priority,
        },
        output={
            "records_analyzed": len(data),
            "segments_count": len(segments),
            "high_priority_count": len(high_priority),
        },
    )


async def run_condition(step: ConditionStep, ctx: ExecutionContext) -> StepResult:
    expression = step.config.condition_logic
    for name in unresolved_tokens(expression, ctx.bindings):
        if name not in ctx.unresolved:
            ctx.unresolved.append(name)

    try:
        passed = evaluate(expression, ctx.bindings)
    except ConditionError as e:
        raise StepRuntimeError(str(e)) from e

    output = {"expression": expression, "condition_result": passed}
    if not passed:
        return StepResult(StepStatus.SKIP_REST, output=output)
    return StepResult(StepStatus.COMPLETED, variables={"condition_result": True}, output=output)


async def run_email_send(step: EmailSendStep, ctx: ExecutionContext) -> StepResult:
    config = step.config
    records = _records(ctx, config.records_key)

    defaults = ctx.delivery.default_credentials(config.email_service)
    credentials = DeliveryCredentials(
        api_key=ctx.render(config.api_key) if config.api_key else defaults.api_key,
        domain=ctx.render(config.domain) if config.domain else defaults.domain,
    )
    from_email = ctx.render(config.from_email)
    from_name = ctx.render(config.from_name) if config.from_name else None

    outcomes: list[dict] = []
    sent = failed = 0
    for record in records:
        recipient = record.get(config.recipient_field) if isinstance(record, dict) else None
        if not recipient:
            outcomes.append({"recipient": None, "status": "skipped", "error": f"missing {config.recipient_field}"})
            continue

        scope = record_scope(record)
        message = EmailMessage(
            to=recipient,
            subject=ctx.render(config.subject_template, scope),
            body=ctx.render(config.body_template, scope),
            from_email=from_email,
            from_name=from_name,
            to_name=record.get("name"),
        )
        try:
            receipt = await ctx.delivery.send(config.email_service, credentials, message)
        except DeliveryError as e:
            failed += 1
            outcomes.append({"recipient": recipient, "status": "failed", "error": e.message})
            if config.fail_on_delivery_error:
                return StepResult(
                    StepStatus.FAILED,
                    error=f"Delivery to {recipient} failed: {e.message}",
                    output={"emails_sent": sent, "emails_failed": failed, "delivery_outcomes": outcomes},
                    emails_sent=sent,
                )
            continue
        sent += 1
        outcomes.append({"recipient": recipient, "status": "sent", "message_id": receipt.message_id})

    attempted = sent + failed
    summary = {"emails_sent": sent, "emails_failed": failed, "delivery_outcomes": outcomes}
    if attempted and not sent:
        first_error = next(o["error"] for o in outcomes if o["status"] == "failed")
        return StepResult(
            StepStatus.FAILED,
            error=f"All {failed} deliveries via {config.email_service} failed: {first_error}",
            output=summary,
        )

    return StepResult(
        StepStatus.COMPLETED,
        variables={**summary, "send_success_rate": round(sent / attempted * 100, 1) if attempted else 0.0},
        output=summary,
        emails_sent=sent,
    )


async def run_wait_delay(step: WaitDelayStep, ctx: ExecutionContext) -> StepResult:
    duration = step.config.duration
    if duration == 0 or ctx.resumed:
        return StepResult(
            StepStatus.COMPLETED,
            variables={"wait_completed": True},
            output={"waited_ms": duration, "resumed": ctx.resumed},
        )

    if duration <= ctx.wait_inline_max_ms:
        await asyncio.sleep(duration / 1000)
        return StepResult(StepStatus.COMPLETED, variables={"wait_completed": True}, output={"waited_ms": duration})

    resume_at = utcnow() + timedelta(milliseconds=duration)
    return StepResult(StepStatus.SUSPENDED, output={"resume_at": resume_at.isoformat()}, resume_at=resume_at)


HANDLERS: dict[str, Callable[[Any, ExecutionContext], Awaitable[StepResult]]] = {
    "data_source": run_data_source,
    "ai_content": run_ai_content,
    "ai_analysis": run_ai_analysis,
    "condition": run_condition,
    "email_send": run_email_send,
    "wait_delay": run_wait_delay,
}
