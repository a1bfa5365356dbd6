"""FastAPI application — carrier webhooks for the telephone payment flow.

Endpoints:

  POST /phone-payment            Payment state machine webhook (returns TwiML)
  POST /phone-payment/connect    Human-escalation entry point (returns TwiML)
  GET  /health                   Health check
  GET  /api/customers/{id}/payments   Admin: balance + payment records

The carrier flow:
  1. The main phone menu redirects a caller to /phone-payment with
     caller_number (and customer_id when already known)
  2. Each response gathers digits and names the next /phone-payment
     callback, with every collected value in its query string
  3. The carrier posts the digits (form-encoded ``Digits``) to that address
  4. Dead ends and timeouts redirect to /phone-payment/connect

Webhook responses are always HTTP 200 with XML; failures degrade to a
"please hold" hand-off.
"""

from __future__ import annotations

# Load .env into os.environ early so Settings and any driver picking up
# environment variables see the same values.
from dotenv import load_dotenv
load_dotenv()

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

# Configure root logger early so all app loggers are visible when run via
# `uvicorn phonepay.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from phonepay.auth import require_admin_token
from phonepay.config import settings
from phonepay.flow import PaymentFlow
from phonepay.ivr.twiml import render_fault
from phonepay.ledger.db import Database, get_database
from phonepay.ledger.store import CustomerDirectory, LedgerWriter
from phonepay.payments.base import PaymentGateway
from phonepay.payments.cardknox import CardknoxGateway

log = logging.getLogger("phonepay.app")

_START_TIME = time.time()


def _xml(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


def _base_url(request: Request) -> str:
    """Public base URL for callback addresses."""
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    host = request.headers.get("host", f"{settings.host}:{settings.port}")
    # Behind a TLS-terminating proxy or tunnel the carrier reached us over https
    forwarded_proto = request.headers.get("x-forwarded-proto", "")
    scheme = forwarded_proto or request.url.scheme
    return f"{scheme}://{host}"


async def _carrier_fields(request: Request) -> dict[str, str]:
    """Carrier parameters from a form-encoded or JSON body (empty for GET)."""
    if request.method != "POST":
        return {}
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {k: str(v) for k, v in form.items()}
    if "application/json" in content_type:
        body = await request.json()
        if isinstance(body, dict):
            return {k: str(v) for k, v in body.items() if v is not None}
    return {}


def create_app(
    database: Optional[Database] = None,
    gateway: Optional[PaymentGateway] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for warning in settings.validate_startup():
            log.warning(warning)
        db = database or get_database()
        await db.init()
        app.state.database = db
        app.state.directory = CustomerDirectory(db)
        app.state.ledger = LedgerWriter(db)
        app.state.flow = PaymentFlow(
            app.state.directory,
            app.state.ledger,
            gateway or CardknoxGateway(),
        )
        yield
        await db.close()

    app = FastAPI(
        title="Phone Payments",
        description="Touch-tone card payments against customer balances",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check — confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Carrier webhooks ───────────────────────────────────────

    @app.api_route("/phone-payment", methods=["GET", "POST"])
    async def phone_payment(request: Request) -> Response:
        """One hop of the payment state machine."""
        base_url = _base_url(request)
        try:
            fields = await _carrier_fields(request)
        except Exception:
            log.exception("Unreadable carrier body")
            return _xml(render_fault(base_url))

        flow: PaymentFlow = request.app.state.flow
        twiml = await flow.handle(
            request.query_params,
            fields.get("Digits", ""),
            base_url,
            call_sid=fields.get("CallSid", ""),
        )
        return _xml(twiml)

    @app.api_route("/phone-payment/connect", methods=["GET", "POST"])
    async def phone_payment_connect(request: Request) -> Response:
        """Hand the caller to a representative."""
        flow: PaymentFlow = request.app.state.flow
        return _xml(await flow.connect(request.query_params))

    # ── Admin API ──────────────────────────────────────────────

    @app.get(
        "/api/customers/{customer_id}/payments",
        dependencies=[Depends(require_admin_token)],
    )
    async def customer_payments(customer_id: str, request: Request) -> JSONResponse:
        """Balance and recorded phone payments for one customer."""
        directory: CustomerDirectory = request.app.state.directory
        ledger: LedgerWriter = request.app.state.ledger

        account = await directory.get_account(customer_id)
        if account is None:
            raise HTTPException(status_code=404, detail="Customer not found")

        payments = await ledger.payments_for(customer_id)
        return JSONResponse({
            "customer_id": account.customer_id,
            "name": account.name,
            "balance_cents": account.balance_cents,
            "total_paid_cents": await ledger.total_paid(customer_id),
            "payments": [p.model_dump(mode="json") for p in payments],
        })

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "phonepay.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
