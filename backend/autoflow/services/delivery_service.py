"""Email delivery through third-party HTTP APIs.

Each provider turns an :class:`EmailMessage` into its own request shape and
its own response into a :class:`DeliveryReceipt`. Anything that goes wrong,
from a missing key to a 4xx from the provider, surfaces as
:class:`DeliveryError` so callers deal with a single failure type.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from autoflow.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class DeliveryError(Exception):
    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


# ─── Data Types ────────────────────────────────────────────────

@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str
    from_email: str
    from_name: Optional[str] = None
    to_name: Optional[str] = None


@dataclass
class DeliveryCredentials:
    api_key: str
    domain: Optional[str] = None  # mailgun sending domain


@dataclass
class DeliveryReceipt:
    provider: str
    recipient: str
    message_id: Optional[str] = None
    accepted_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


# ─── Request payloads ──────────────────────────────────────────

class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ResendPayload(_Payload):
    from_: str = Field(alias="from")
    to: list[str]
    subject: str
    text: str


class SendGridAddress(_Payload):
    email: str
    name: Optional[str] = None


class SendGridPersonalization(_Payload):
    to: list[SendGridAddress]


class SendGridContent(_Payload):
    type: str = "text/plain"
    value: str


class SendGridPayload(_Payload):
    personalizations: list[SendGridPersonalization]
    from_: SendGridAddress = Field(alias="from")
    subject: str
    content: list[SendGridContent]


class MailgunPayload(_Payload):
    from_: str = Field(alias="from")
    to: str
    subject: str
    text: str


def _sender(message: EmailMessage) -> str:
    return f"{message.from_name} <{message.from_email}>" if message.from_name else message.from_email


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict):
        if data.get("message"):
            return str(data["message"])
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", errors[0]))
    return str(data)[:200]


# ─── Providers ─────────────────────────────────────────────────

class DeliveryProvider(ABC):
    name: str

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    @abstractmethod
    def validate_credentials(self, credentials: DeliveryCredentials) -> tuple[bool, Optional[str]]:
        ...

    @abstractmethod
    async def _post(self, client: httpx.AsyncClient, credentials: DeliveryCredentials, message: EmailMessage) -> httpx.Response:
        ...

    def _receipt(self, response: httpx.Response, message: EmailMessage) -> DeliveryReceipt:
        message_id = None
        try:
            data = response.json()
            if isinstance(data, dict):
                message_id = data.get("id")
        except ValueError:
            pass
        return DeliveryReceipt(provider=self.name, recipient=message.to, message_id=message_id)

    async def send(self, credentials: DeliveryCredentials, message: EmailMessage) -> DeliveryReceipt:
        ok, problem = self.validate_credentials(credentials)
        if not ok:
            raise DeliveryError(self.name, problem)

        try:
            if self._client is not None:
                response = await self._post(self._client, credentials, message)
            else:
                async with httpx.AsyncClient(timeout=settings.DELIVERY_TIMEOUT_SECONDS) as client:
                    response = await self._post(client, credentials, message)
        except httpx.HTTPError as e:
            logger.error(f"{self.name} request to {message.to} failed: {e}")
            raise DeliveryError(self.name, f"request failed: {e}") from e

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.error(f"{self.name} rejected email to {message.to} ({response.status_code}): {detail}")
            raise DeliveryError(self.name, detail, response.status_code)

        return self._receipt(response, message)


class ResendProvider(DeliveryProvider):
    name = "resend"
    url = "https://api.resend.com/emails"

    def validate_credentials(self, credentials):
        if not credentials.api_key:
            return False, "API key is required"
        if not credentials.api_key.startswith("re_"):
            return False, "Resend API keys start with 're_'"
        return True, None

    async def _post(self, client, credentials, message):
        payload = ResendPayload(from_=_sender(message), to=[message.to], subject=message.subject, text=message.body)
        return await client.post(
            self.url,
            json=payload.body(),
            headers={"Authorization": f"Bearer {credentials.api_key}"},
        )


class SendGridProvider(DeliveryProvider):
    name = "sendgrid"
    url = "https://api.sendgrid.com/v3/mail/send"

    def validate_credentials(self, credentials):
        if not credentials.api_key:
            return False, "API key is required"
        if not credentials.api_key.startswith("SG."):
            return False, "SendGrid API keys start with 'SG.'"
        return True, None

    async def _post(self, client, credentials, message):
        payload = SendGridPayload(
            personalizations=[SendGridPersonalization(to=[SendGridAddress(email=message.to, name=message.to_name)])],
            from_=SendGridAddress(email=message.from_email, name=message.from_name),
            subject=message.subject,
            content=[SendGridContent(value=message.body)],
        )
        return await client.post(
            self.url,
            json=payload.body(),
            headers={"Authorization": f"Bearer {credentials.api_key}"},
        )

    def _receipt(self, response, message):
        # SendGrid answers 202 with an empty body
        return DeliveryReceipt(
            provider=self.name,
            recipient=message.to,
            message_id=response.headers.get("X-Message-Id"),
        )


class MailgunProvider(DeliveryProvider):
    name = "mailgun"
    base_url = "https://api.mailgun.net/v3"

    def validate_credentials(self, credentials):
        if not credentials.api_key:
            return False, "API key is required"
        if not credentials.domain:
            return False, "Mailgun needs a sending domain"
        return True, None

    async def _post(self, client, credentials, message):
        payload = MailgunPayload(from_=_sender(message), to=message.to, subject=message.subject, text=message.body)
        return await client.post(
            f"{self.base_url}/{credentials.domain}/messages",
            data=payload.body(),
            auth=("api", credentials.api_key),
        )


PROVIDERS: dict[str, type[DeliveryProvider]] = {
    "resend": ResendProvider,
    "sendgrid": SendGridProvider,
    "mailgun": MailgunProvider,
}


class DeliveryService:
    """Entry point used by ``email_send`` steps."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    def get_provider(self, provider: str) -> DeliveryProvider:
        provider_cls = PROVIDERS.get(provider)
        if provider_cls is None:
            raise DeliveryError(provider, "unsupported email service")
        return provider_cls(self._client)

    def default_credentials(self, provider: str) -> DeliveryCredentials:
        keys = {
            "resend": settings.RESEND_API_KEY,
            "sendgrid": settings.SENDGRID_API_KEY,
            "mailgun": settings.MAILGUN_API_KEY,
        }
        return DeliveryCredentials(
            api_key=keys.get(provider, ""),
            domain=settings.MAILGUN_DOMAIN or None,
        )

    async def send(self, provider: str, credentials: DeliveryCredentials, message: EmailMessage) -> DeliveryReceipt:
        receipt = await self.get_provider(provider).send(credentials, message)
        logger.info(f"Email to {message.to} accepted by {provider} ({receipt.message_id})")
        return receipt
