"""
Tests for EmailDispatchClient.

La funzione serverless è simulata con httpx.MockTransport.
"""

import json

import httpx
import pytest

from careledger.core.exceptions import BusinessValidationError
from careledger.services.email_dispatch import EmailDispatchClient


def _client(handler, **kwargs):
    return EmailDispatchClient(
        base_url="https://functions.example.com",
        api_key="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


CONTEXT = {
    "approved": True,
    "client_name": "Mary Client",
    "request_type": "cancellation",
    "booking_start": "2025-05-20 09:00",
    "new_start": None,
    "admin_notes": None,
}


class TestSend:

    async def test_posts_rendered_template(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "msg-1"})

        result = await _client(handler).send(
            ["client@example.com"], "Request Approved", "booking_request_decision.html", CONTEXT
        )

        assert result.success is True
        assert result.status_code == 200
        assert captured["url"] == "https://functions.example.com/send-notification-email"
        assert captured["auth"] == "Bearer secret"
        assert captured["body"]["to"] == ["client@example.com"]
        assert captured["body"]["subject"] == "Request Approved"
        assert "Mary Client" in captured["body"]["html"]

    async def test_provider_error_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="upstream unavailable")

        result = await _client(handler).send(
            ["client@example.com"], "Request Approved", "booking_request_decision.html", CONTEXT
        )

        assert result.success is False
        assert result.status_code == 502
        assert result.error == "upstream unavailable"

    async def test_network_error_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _client(handler).send(
            ["client@example.com"], "Request Approved", "booking_request_decision.html", CONTEXT
        )

        assert result.success is False
        assert result.status_code is None
        assert "connection refused" in result.error

    async def test_not_configured(self):
        client = EmailDispatchClient(base_url="")

        result = await client.send(
            ["client@example.com"], "Request Approved", "booking_request_decision.html", CONTEXT
        )

        assert result.success is False
        assert result.error == "Email function URL not configured"

    async def test_missing_template(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200)

        result = await _client(handler).send(["client@example.com"], "Hello", "missing.html", {})

        assert result.success is False
        assert result.error.startswith("Template error")


class TestRecipients:

    async def test_no_recipients(self):
        with pytest.raises(BusinessValidationError):
            await EmailDispatchClient(base_url="").send([], "Hello", "invoice_created.html")

    async def test_invalid_address(self):
        with pytest.raises(BusinessValidationError) as exc_info:
            await EmailDispatchClient(base_url="").send(["not-an-email"], "Hello", "invoice_created.html")
        assert exc_info.value.status_code == 422
