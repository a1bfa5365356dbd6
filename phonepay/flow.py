"""Per-webhook payment flow driver.

Each carrier callback is handled from scratch:

  1. Decode the CallContext from the callback's query string
  2. Re-read whatever the step needs (account, balance, prior payment)
  3. Ask the transition table where to go
  4. At ``process_payment`` only: charge the card and record the payment
  5. Render the markup for the destination (its gather action carries the
     updated context forward)

No state survives between callbacks on this side.  Any unexpected
exception is turned into a "please hold" hand-off, never an error status.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from phonepay.config import settings
from phonepay.ivr import transitions
from phonepay.ivr.params import ContextError, decode_context
from phonepay.ivr.transitions import Transition
from phonepay.ivr.twiml import render, render_connect, render_fault
from phonepay.ledger.store import CustomerDirectory, LedgerWriter
from phonepay.models.call_context import CallContext, Step
from phonepay.payments.base import Approved, ChargeRequest, PaymentGateway

log = logging.getLogger("phonepay.flow")


def redact_pii(value: str) -> str:
    """Mask PII for logging — show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


def attempt_key(call_sid: str, ctx: CallContext) -> Optional[str]:
    """Identity of one charge attempt within one call, if the carrier gave us a call id."""
    if not call_sid:
        return None
    return f"{call_sid}:{ctx.retry_count}"


class PaymentFlow:
    """Stateless handler for the phone payment webhooks.

    Typical use from a request handler::

        flow = PaymentFlow(CustomerDirectory(db), LedgerWriter(db), CardknoxGateway())
        twiml = await flow.handle(request.query_params, digits, base_url, call_sid)
    """

    def __init__(
        self,
        directory: CustomerDirectory,
        ledger: LedgerWriter,
        gateway: PaymentGateway,
        max_retries: Optional[int] = None,
    ) -> None:
        self._directory = directory
        self._ledger = ledger
        self._gateway = gateway
        self._max_retries = (
            settings.max_payment_retries if max_retries is None else max_retries
        )

    # ── Public API ────────────────────────────────────────────

    async def handle(
        self,
        params: Mapping[str, str],
        digits: str,
        base_url: str,
        call_sid: str = "",
    ) -> str:
        """Process one callback and return the TwiML to send back."""
        ctx: Optional[CallContext] = None
        try:
            ctx = decode_context(params)
            log.info(
                "Phone payment: step=%s caller=%s customer=%s digits=%d",
                ctx.step.value,
                redact_pii(ctx.caller_number),
                ctx.customer_id or "-",
                len(digits or ""),
            )
            transition = await self.step(ctx, digits, call_sid)
            log.info(
                "Transition: %s -> %s (%s)",
                ctx.step.value,
                transition.target.value,
                transition.reason.value,
            )
            return render(transition, base_url, settings.say_voice, settings.say_language)
        except ContextError as exc:
            log.warning("Rejected callback parameters: %s", exc)
        except Exception:
            log.exception(
                "Phone payment fault at step=%s",
                ctx.step.value if ctx else "?",
            )
        return render_fault(base_url, ctx, settings.say_voice, settings.say_language)

    async def step(self, ctx: CallContext, digits: str, call_sid: str = "") -> Transition:
        """Compute the transition for one callback, performing any lookups and side effects."""
        if ctx.step is Step.CHECK_BALANCE:
            account = await self._directory.resolve(ctx.customer_id, ctx.caller_number)
            if account is None:
                log.info("No customer for caller %s", redact_pii(ctx.caller_number))
            return transitions.begin(ctx, account)

        if ctx.step is Step.PROCESS_PAYMENT:
            return await self._process_payment(ctx, call_sid)

        account = None
        if ctx.step in (Step.SELECT_AMOUNT, Step.CUSTOM_AMOUNT) and ctx.customer_id:
            account = await self._directory.get_account(ctx.customer_id)
        return transitions.advance(ctx, digits, account, self._max_retries)

    async def connect(self, params: Mapping[str, str]) -> str:
        """Human-escalation entry point."""
        ctx: Optional[CallContext] = None
        try:
            ctx = decode_context(params)
        except ContextError as exc:
            log.warning("Connect with bad parameters: %s", exc)
        forward = (ctx.forward_number if ctx else "") or settings.store_forward_number
        log.info(
            "Connecting caller %s to representative (forward=%s)",
            redact_pii(ctx.caller_number if ctx else ""),
            redact_pii(forward),
        )
        return render_connect(
            ctx or CallContext(), forward, settings.say_voice, settings.say_language
        )

    # ── Payment ───────────────────────────────────────────────

    async def _process_payment(self, ctx: CallContext, call_sid: str) -> Transition:
        key = attempt_key(call_sid, ctx)

        # A replayed webhook for an attempt that already settled: confirm
        # the stored payment instead of charging again.
        if key:
            prior = await self._ledger.find_payment(attempt_key=key)
            if prior is not None:
                log.warning("Replay of settled attempt %s (txn=%s)", key, prior.transaction_id)
                balance = await self._ledger.balance_of(prior.customer_id)
                return transitions.settle(
                    ctx, Approved(prior.transaction_id), self._max_retries, balance
                )

        account = (
            await self._directory.get_account(ctx.customer_id) if ctx.customer_id else None
        )
        refused = transitions.precheck(ctx, account)
        if refused is not None:
            log.info("Charge not attempted: %s", refused.reason.value)
            return refused

        result = await self._gateway.charge(
            ChargeRequest(
                amount_cents=ctx.amount_cents,
                card_number=ctx.card_number,
                expiry=ctx.expiry,
                cvv=ctx.cvv,
                zip=ctx.zip or "",
                customer_id=account.customer_id,
                customer_name=account.name,
                invoice=key or "",
            )
        )

        new_balance: Optional[int] = None
        if isinstance(result, Approved):
            try:
                applied = await self._ledger.apply_payment(
                    account.customer_id, ctx.amount_cents, result.transaction_id, key
                )
                new_balance = applied.balance_cents
            except Exception:
                # The card has been charged; tell the caller so and leave the
                # record for manual reconciliation.
                log.exception(
                    "Charge approved but NOT recorded: customer=%s amount_cents=%d txn=%s",
                    account.customer_id,
                    ctx.amount_cents,
                    result.transaction_id,
                )
        else:
            log.info("Charge not approved: %s", result)

        return transitions.settle(ctx, result, self._max_retries, new_balance)
