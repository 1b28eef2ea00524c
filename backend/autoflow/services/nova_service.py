import asyncio
import json
import logging
import time

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from autoflow.config import get_settings
from autoflow.services.ai_service import AIServiceError

logger = logging.getLogger(__name__)
settings = get_settings()

CONTENT_SYSTEM = """You are a marketing copywriter. Write the requested message in the given brand voice.
Return only the message text, with no preamble."""

ANALYSIS_SYSTEM = """You are a sales analyst. Given a list of contact records and an analysis request,
segment and score the contacts.

Return ONLY a JSON object with:
- "segments": list of {"name", "count", "description"}
- "insights": list of short strings
- "recommendations": list of short strings
- "priority_contacts": list of {"email", "name", "score"} where score is 0-100"""


class ThrottledError(AIServiceError):
    """Raised when Nova API is rate-limited."""


class NovaService:
    # Class-level throttle state, shared across all instances
    _throttle_until: float = 0

    def __init__(self):
        self.client = boto3.client(
            "bedrock-runtime",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        )

    def _is_throttled(self) -> bool:
        return time.time() < NovaService._throttle_until

    def _handle_throttle(self, retry_after: int = 10):
        NovaService._throttle_until = time.time() + retry_after
        logger.warning(f"Nova API throttled, backing off for {retry_after}s")

    def _invoke_text(self, prompt: str, system: str = "", max_tokens: int = 4096) -> str:
        if self._is_throttled():
            raise ThrottledError("Nova API is rate-limited, waiting for cooldown")

        messages = [{"role": "user", "content": [{"text": prompt}]}]
        body = {
            "messages": messages,
            "inferenceConfig": {"maxTokens": max_tokens, "temperature": 0.3},
        }
        if system:
            body["system"] = [{"text": system}]

        try:
            response = self.client.invoke_model(
                modelId=settings.NOVA_TEXT_MODEL,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(body),
            )
            result = json.loads(response["body"].read())
            logger.info(f"Nova text model invoked successfully ({settings.NOVA_TEXT_MODEL})")
            return result["output"]["message"]["content"][0]["text"]
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code == "ThrottlingException":
                self._handle_throttle(10)
                raise ThrottledError(str(e))
            raise AIServiceError(f"Nova request failed: {error_code}") from e
        except BotoCoreError as e:
            raise AIServiceError(f"Nova request failed: {e}") from e

    def invoke_text_with_retry(self, prompt: str, system: str = "", max_tokens: int = 4096, retries: int = 2) -> str:
        """Invoke text model with automatic retry on throttle."""
        for attempt in range(retries + 1):
            try:
                return self._invoke_text(prompt, system, max_tokens)
            except ThrottledError:
                if attempt < retries:
                    wait = 5 * (attempt + 1)
                    logger.info(f"Throttled, retrying in {wait}s (attempt {attempt + 1}/{retries})")
                    time.sleep(wait)
                    NovaService._throttle_until = 0  # Clear throttle for retry
                else:
                    raise

    @staticmethod
    def _parse_json(raw: str) -> dict:
        text = raw.strip()
        if text.startswith("```"):
            text = text.split("\n", 1)[1] if "\n" in text else text[3:]
            if text.endswith("```"):
                text = text[:-3]
            text = text.strip()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise AIServiceError(f"Nova returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise AIServiceError("Nova returned JSON that is not an object")
        return data

    async def generate(self, prompt: str, context: dict) -> str:
        voice = context.get("brand_voice", "professional")
        full_prompt = f"Brand voice: {voice}\n\n{prompt}"
        record = context.get("record")
        if record:
            full_prompt += f"\n\nRecipient details:\n{json.dumps(record, default=str)[:1000]}"
        raw = await asyncio.to_thread(self.invoke_text_with_retry, full_prompt, CONTENT_SYSTEM, 1024)
        return raw.strip()

    async def analyze(self, prompt: str, data: list[dict]) -> dict:
        full_prompt = f"""Analysis request: {prompt}

Records ({len(data)}):
{json.dumps(data, default=str)[:6000]}

Return ONLY valid JSON."""
        raw = await asyncio.to_thread(self.invoke_text_with_retry, full_prompt, ANALYSIS_SYSTEM, 2048)
        result = self._parse_json(raw)
        for key in ("segments", "insights", "recommendations", "priority_contacts"):
            result.setdefault(key, [])
        return result
