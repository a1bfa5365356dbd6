"""Cardknox (Sola) gateway over its JSON transaction endpoint.

One POST per charge, no retries.  The response's ``xResult`` decides the
outcome:

  A  approved   → Approved(xRefNum, xAuthCode)
  D  declined   → Declined(xError)
  *  anything   → GatewayError(xError)

Transport failures, non-2xx statuses and unparseable bodies are all
``GatewayError``: the card may or may not have been charged, and the
caller gets the same retry-or-representative choice either way.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from phonepay.config import settings
from phonepay.payments.base import (
    Approved,
    ChargeRequest,
    ChargeResult,
    Declined,
    GatewayError,
    PaymentGateway,
)

logger = logging.getLogger(__name__)

API_VERSION = "5.0.0"
INVOICE_MAX_LENGTH = 20


class CardknoxGateway(PaymentGateway):
    """PaymentGateway backed by the Cardknox ``gatewayjson`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        url: Optional[str] = None,
        software_name: Optional[str] = None,
        software_version: Optional[str] = None,
        store_name: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = settings.gateway_api_key if api_key is None else api_key
        self._url = url or settings.gateway_url
        self._software_name = software_name or settings.software_name
        self._software_version = software_version or settings.software_version
        self._store_name = store_name or settings.store_name
        self._timeout = timeout or settings.gateway_timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Request / response mapping
    # ------------------------------------------------------------------

    def build_payload(self, request: ChargeRequest) -> dict[str, str]:
        """Map a ChargeRequest onto Cardknox ``x*`` fields."""
        payload = {
            "xKey": self._api_key,
            "xVersion": API_VERSION,
            "xSoftwareName": self._software_name,
            "xSoftwareVersion": self._software_version,
            "xCommand": "cc:sale",
            "xAmount": f"{request.amount_cents // 100}.{request.amount_cents % 100:02d}",
            "xCardNum": request.card_number,
            "xCVV": request.cvv,
            "xExp": request.expiry,
            "xDescription": f"Phone payment - {self._store_name}",
        }
        if request.zip:
            payload["xZip"] = request.zip
        if request.invoice:
            # Field holds 20 characters; the tail keeps the attempt counter.
            payload["xInvoice"] = request.invoice[-INVOICE_MAX_LENGTH:]
        if request.customer_id:
            payload["xCustom01"] = request.customer_id
        if request.customer_name:
            first, _, last = request.customer_name.strip().partition(" ")
            payload["xBillFirstName"] = first
            payload["xBillLastName"] = last.strip()
        return payload

    @staticmethod
    def parse_response(data: Any) -> ChargeResult:
        """Decode a ``gatewayjson`` response body into a ChargeResult."""
        if not isinstance(data, dict):
            return GatewayError("Malformed gateway response")

        result = data.get("xResult")
        if result == "A":
            ref = str(data.get("xRefNum") or "")
            if not ref:
                # Approved without a reference cannot be recorded safely.
                return GatewayError("Approved response missing transaction reference")
            return Approved(transaction_id=ref, auth_code=str(data.get("xAuthCode") or ""))
        if result == "D":
            return Declined(str(data.get("xError") or "Card declined"))
        return GatewayError(str(data.get("xError") or "Payment processing error"))

    # ------------------------------------------------------------------
    # PaymentGateway interface
    # ------------------------------------------------------------------

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        if not self._api_key:
            logger.error("Gateway API key not configured, refusing to charge")
            return GatewayError("Payment gateway not configured")

        logger.info(
            "Submitting charge: amount_cents=%d customer=%s card_len=%d",
            request.amount_cents,
            request.customer_id,
            len(request.card_number),
        )

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(self._url, json=self.build_payload(request))
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Gateway returned status %s", exc.response.status_code)
            return GatewayError(f"Gateway status {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.error("Gateway transport error: %s", type(exc).__name__)
            return GatewayError(f"Gateway unreachable: {type(exc).__name__}")
        except ValueError:
            logger.error("Gateway returned a non-JSON body")
            return GatewayError("Malformed gateway response")

        result = self.parse_response(data)
        logger.info("Gateway result: %s", type(result).__name__)
        return result
