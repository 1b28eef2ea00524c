"""The AI capability the engine talks to, and how a concrete binding is picked."""

import logging
from typing import Protocol

from autoflow.config import get_settings

logger = logging.getLogger(__name__)


class AIServiceError(Exception):
    """The model call failed or returned something unusable."""


class AICapability(Protocol):
    async def generate(self, prompt: str, context: dict) -> str:
        ...

    async def analyze(self, prompt: str, data: list[dict]) -> dict:
        """Return at least ``segments``, ``insights``, ``recommendations`` and ``priority_contacts``."""
        ...


class SimulatedAIService:
    """Deterministic stand-in used when no model provider is reachable."""

    async def generate(self, prompt: str, context: dict) -> str:
        voice = context.get("brand_voice", "neutral")
        return f"[{voice}] {prompt}"

    async def analyze(self, prompt: str, data: list[dict]) -> dict:
        high, nurture, low = [], [], []
        for record in data:
            score = record.get("score", 50) if isinstance(record, dict) else 50
            try:
                score = float(score)
            except (TypeError, ValueError):
                score = 50
            if score > 80:
                high.append(record)
            elif score >= 50:
                nurture.append(record)
            else:
                low.append(record)

        return {
            "segments": [
                {"name": "high_value", "count": len(high)},
                {"name": "nurture", "count": len(nurture)},
                {"name": "low_priority", "count": len(low)},
            ],
            "insights": [f"{len(data)} records reviewed for: {prompt}"],
            "recommendations": ["Prioritize personalized outreach to high_value contacts"] if high else [],
            "priority_contacts": [
                {"email": r.get("email"), "name": r.get("name"), "score": r.get("score")} for r in high
            ],
        }


_ai_instance: AICapability | None = None


def get_ai_service() -> AICapability:
    """Shared AI binding. Falls back to the simulated one if Nova cannot be set up."""
    global _ai_instance
    if _ai_instance is not None:
        return _ai_instance

    settings = get_settings()
    if settings.AI_PROVIDER == "simulated":
        _ai_instance = SimulatedAIService()
        return _ai_instance

    try:
        from autoflow.services.nova_service import NovaService
        _ai_instance = NovaService()
        logger.info("Nova AI service connected for executor")
    except Exception as e:
        logger.warning(f"Nova AI not available, using simulated AI: {e}")
        _ai_instance = SimulatedAIService()
    return _ai_instance
