"""Tests for the Cardknox gateway adapter (no network: httpx.MockTransport)."""

import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx
import pytest

from phonepay.payments.base import Approved, ChargeRequest, Declined, GatewayError
from phonepay.payments.cardknox import CardknoxGateway

GATEWAY_URL = "https://gateway.test/gatewayjson"


def _request(**kwargs) -> ChargeRequest:
    values = dict(
        amount_cents=4217,
        card_number="4111111111111111",
        expiry="0326",
        cvv="123",
        zip="12345",
        customer_id="c1",
        customer_name="Jane Q Doe",
        invoice="CA1234:0",
    )
    values.update(kwargs)
    return ChargeRequest(**values)


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.exc is not None:
            raise self.exc
        return self.response


def _gateway(handler, api_key="test-key") -> CardknoxGateway:
    return CardknoxGateway(
        api_key=api_key,
        url=GATEWAY_URL,
        software_name="Test POS",
        software_version="9.9",
        store_name="Test Books",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


class TestPayload:
    def test_fields(self):
        payload = _gateway(Recorder()).build_payload(_request())
        assert payload["xKey"] == "test-key"
        assert payload["xVersion"] == "5.0.0"
        assert payload["xCommand"] == "cc:sale"
        assert payload["xAmount"] == "42.17"
        assert payload["xCardNum"] == "4111111111111111"
        assert payload["xExp"] == "0326"
        assert payload["xCVV"] == "123"
        assert payload["xZip"] == "12345"
        assert payload["xDescription"] == "Phone payment - Test Books"
        assert payload["xInvoice"] == "CA1234:0"
        assert payload["xCustom01"] == "c1"
        assert payload["xBillFirstName"] == "Jane"
        assert payload["xBillLastName"] == "Q Doe"

    def test_amount_formatting(self):
        gw = _gateway(Recorder())
        assert gw.build_payload(_request(amount_cents=5))["xAmount"] == "0.05"
        assert gw.build_payload(_request(amount_cents=2500))["xAmount"] == "25.00"

    def test_invoice_keeps_attempt_counter_for_long_call_ids(self):
        call_sid = "CA" + "0123456789abcdef" * 2
        gw = _gateway(Recorder())
        first = gw.build_payload(_request(invoice=f"{call_sid}:0"))["xInvoice"]
        retry = gw.build_payload(_request(invoice=f"{call_sid}:1"))["xInvoice"]
        assert len(first) == 20
        assert first.endswith(":0")
        assert retry.endswith(":1")
        assert first != retry

    def test_optional_fields_omitted(self):
        payload = _gateway(Recorder()).build_payload(
            _request(zip="", invoice="", customer_name="")
        )
        assert "xZip" not in payload
        assert "xInvoice" not in payload
        assert "xBillFirstName" not in payload

    def test_request_repr_hides_card(self):
        text = repr(_request())
        assert "4111111111111111" not in text
        assert "cvv" not in text
        assert "***1111" in text


class TestCharge:
    @pytest.mark.asyncio
    async def test_approved(self):
        handler = Recorder(httpx.Response(200, json={
            "xResult": "A", "xRefNum": "TXN0012345678", "xAuthCode": "AUTH01",
        }))
        result = await _gateway(handler).charge(_request())
        assert result == Approved("TXN0012345678", "AUTH01")
        assert len(handler.calls) == 1
        sent = json.loads(handler.calls[0].content)
        assert sent["xAmount"] == "42.17"
        assert str(handler.calls[0].url) == GATEWAY_URL

    @pytest.mark.asyncio
    async def test_declined(self):
        handler = Recorder(httpx.Response(200, json={
            "xResult": "D", "xError": "Insufficient funds",
        }))
        result = await _gateway(handler).charge(_request())
        assert result == Declined("Insufficient funds")

    @pytest.mark.asyncio
    async def test_error_result(self):
        handler = Recorder(httpx.Response(200, json={"xResult": "E", "xError": "Bad key"}))
        result = await _gateway(handler).charge(_request())
        assert isinstance(result, GatewayError)
        assert result.detail == "Bad key"

    @pytest.mark.asyncio
    async def test_approved_without_reference(self):
        handler = Recorder(httpx.Response(200, json={"xResult": "A"}))
        result = await _gateway(handler).charge(_request())
        assert isinstance(result, GatewayError)

    @pytest.mark.asyncio
    async def test_http_error_status_not_retried(self):
        handler = Recorder(httpx.Response(500, text="upstream down"))
        result = await _gateway(handler).charge(_request())
        assert isinstance(result, GatewayError)
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        handler = Recorder(exc=httpx.ConnectError("connection refused"))
        result = await _gateway(handler).charge(_request())
        assert isinstance(result, GatewayError)
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        handler = Recorder(httpx.Response(200, text="<html>maintenance</html>"))
        result = await _gateway(handler).charge(_request())
        assert isinstance(result, GatewayError)

    @pytest.mark.asyncio
    async def test_missing_key_never_calls_out(self):
        handler = Recorder(httpx.Response(200, json={"xResult": "A", "xRefNum": "X"}))
        result = await _gateway(handler, api_key="").charge(_request())
        assert result == GatewayError("Payment gateway not configured")
        assert handler.calls == []


class TestParseResponse:
    def test_not_a_dict(self):
        assert isinstance(CardknoxGateway.parse_response(["A"]), GatewayError)

    def test_decline_default_reason(self):
        assert CardknoxGateway.parse_response({"xResult": "D"}) == Declined("Card declined")
