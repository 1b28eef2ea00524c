"""Tests for the email delivery providers, against a mocked HTTP transport."""

import base64
import json
from urllib.parse import parse_qs

import httpx
import pytest

from autoflow.services.delivery_service import DeliveryCredentials, DeliveryError, DeliveryService, EmailMessage

MESSAGE = EmailMessage(
    to="ada@example.com",
    subject="Hello Ada",
    body="Your engine is ready.",
    from_email="team@example.com",
    from_name="Team",
    to_name="Ada",
)


def _service(handler, requests: list):
    def record(request: httpx.Request):
        requests.append(request)
        return handler(request)

    return DeliveryService(httpx.AsyncClient(transport=httpx.MockTransport(record)))


class TestResend:
    @pytest.mark.asyncio
    async def test_posts_json_with_bearer_token(self):
        requests = []
        service = _service(lambda r: httpx.Response(200, json={"id": "re-123"}), requests)

        receipt = await service.send("resend", DeliveryCredentials(api_key="re_abc"), MESSAGE)

        [request] = requests
        assert str(request.url) == "https://api.resend.com/emails"
        assert request.headers["Authorization"] == "Bearer re_abc"
        assert json.loads(request.content) == {
            "from": "Team <team@example.com>",
            "to": ["ada@example.com"],
            "subject": "Hello Ada",
            "text": "Your engine is ready.",
        }
        assert receipt.message_id == "re-123"
        assert receipt.provider == "resend"
        assert receipt.recipient == "ada@example.com"

    @pytest.mark.asyncio
    async def test_rejects_malformed_key_without_calling_out(self):
        requests = []
        service = _service(lambda r: httpx.Response(200, json={}), requests)

        with pytest.raises(DeliveryError) as exc:
            await service.send("resend", DeliveryCredentials(api_key="sk_live"), MESSAGE)

        assert "re_" in exc.value.message
        assert requests == []

    @pytest.mark.asyncio
    async def test_error_status_becomes_delivery_error(self):
        service = _service(lambda r: httpx.Response(422, json={"message": "Invalid `to` field"}), [])

        with pytest.raises(DeliveryError) as exc:
            await service.send("resend", DeliveryCredentials(api_key="re_abc"), MESSAGE)

        assert exc.value.status_code == 422
        assert exc.value.message == "Invalid `to` field"

    @pytest.mark.asyncio
    async def test_transport_error_becomes_delivery_error(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = _service(boom, [])
        with pytest.raises(DeliveryError) as exc:
            await service.send("resend", DeliveryCredentials(api_key="re_abc"), MESSAGE)
        assert exc.value.status_code is None


class TestSendGrid:
    @pytest.mark.asyncio
    async def test_personalizations_payload(self):
        requests = []
        service = _service(lambda r: httpx.Response(202, headers={"X-Message-Id": "sg-9"}), requests)

        receipt = await service.send("sendgrid", DeliveryCredentials(api_key="SG.key"), MESSAGE)

        [request] = requests
        assert str(request.url) == "https://api.sendgrid.com/v3/mail/send"
        assert request.headers["Authorization"] == "Bearer SG.key"
        body = json.loads(request.content)
        assert body["personalizations"] == [{"to": [{"email": "ada@example.com", "name": "Ada"}]}]
        assert body["from"] == {"email": "team@example.com", "name": "Team"}
        assert body["content"] == [{"type": "text/plain", "value": "Your engine is ready."}]
        assert receipt.message_id == "sg-9"

    @pytest.mark.asyncio
    async def test_first_error_message_reported(self):
        service = _service(
            lambda r: httpx.Response(400, json={"errors": [{"message": "bad from address"}]}), []
        )
        with pytest.raises(DeliveryError) as exc:
            await service.send("sendgrid", DeliveryCredentials(api_key="SG.key"), MESSAGE)
        assert exc.value.message == "bad from address"


class TestMailgun:
    @pytest.mark.asyncio
    async def test_form_post_with_basic_auth(self):
        requests = []
        service = _service(lambda r: httpx.Response(200, json={"id": "<mg@example>", "message": "Queued"}), requests)

        receipt = await service.send(
            "mailgun", DeliveryCredentials(api_key="key-123", domain="mg.example.com"), MESSAGE
        )

        [request] = requests
        assert str(request.url) == "https://api.mailgun.net/v3/mg.example.com/messages"
        expected = base64.b64encode(b"api:key-123").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        form = parse_qs(request.content.decode())
        assert form["to"] == ["ada@example.com"]
        assert form["from"] == ["Team <team@example.com>"]
        assert receipt.message_id == "<mg@example>"

    @pytest.mark.asyncio
    async def test_domain_required(self):
        requests = []
        service = _service(lambda r: httpx.Response(200), requests)
        with pytest.raises(DeliveryError):
            await service.send("mailgun", DeliveryCredentials(api_key="key-123"), MESSAGE)
        assert requests == []


class TestDeliveryService:
    def test_unknown_provider(self):
        with pytest.raises(DeliveryError):
            DeliveryService().get_provider("pigeon")

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(DeliveryError) as exc:
            await DeliveryService().send("resend", DeliveryCredentials(api_key=""), MESSAGE)
        assert "required" in exc.value.message
