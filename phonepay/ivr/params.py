"""CallContext <-> callback query string.

This is the only place that knows the wire names of the flow's own
parameters.  Transitions work on ``CallContext`` values; the HTTP layer
decodes them here on the way in and encodes them into the next callback
address on the way out.

NOTE: card number, expiry and CVV travel in plaintext query parameters
between hops, exactly as the carrier echoes them back.  Keep access logs
for these paths disabled or scrubbed.
"""

from __future__ import annotations

import re
from typing import Mapping
from urllib.parse import urlencode

from phonepay.models.call_context import CallContext, Step

PAYMENT_PATH = "/phone-payment"
CONNECT_PATH = "/phone-payment/connect"

# wire name -> CallContext field
_WIRE_FIELDS = {
    "caller_number": "caller_number",
    "customer_id": "customer_id",
    "customer_name": "customer_name",
    "forward_number": "forward_number",
    "call_log_id": "call_log_id",
    "card": "card_number",
    "expiry": "expiry",
    "cvv": "cvv",
    "zip": "zip",
}
_DIGIT_FIELDS = {"card", "expiry", "cvv", "zip"}
_DIGITS = re.compile(r"^[0-9]{1,19}$")


class ContextError(ValueError):
    """The callback's query string does not describe a valid CallContext."""


def encode_context(ctx: CallContext) -> dict[str, str]:
    """Flatten a context into query parameters, omitting unset fields."""
    params: dict[str, str] = {}
    for wire, attr in _WIRE_FIELDS.items():
        value = getattr(ctx, attr)
        if value:
            params[wire] = str(value)
    params["step"] = ctx.step.value
    if ctx.amount_cents is not None:
        params["amount"] = str(ctx.amount_cents)
    if ctx.retry_count:
        params["retry"] = str(ctx.retry_count)
    return params


def decode_context(params: Mapping[str, str]) -> CallContext:
    """Rebuild a context from query parameters.

    Missing parameters take their defaults (a bare request is the entry
    step).  Malformed ones raise ``ContextError``.
    """
    values: dict[str, object] = {}
    for wire, attr in _WIRE_FIELDS.items():
        raw = (params.get(wire) or "").strip()
        if not raw:
            continue
        if wire in _DIGIT_FIELDS and not _DIGITS.match(raw):
            raise ContextError(f"{wire} is not a digit string")
        values[attr] = raw

    step = (params.get("step") or Step.CHECK_BALANCE.value).strip()
    try:
        values["step"] = Step(step)
    except ValueError:
        raise ContextError(f"unknown step {step!r}") from None

    amount = (params.get("amount") or "").strip()
    if amount:
        if not amount.isdecimal() or int(amount) <= 0:
            raise ContextError(f"amount must be positive cents, got {amount!r}")
        values["amount_cents"] = int(amount)

    retry = (params.get("retry") or "").strip()
    if retry:
        if not retry.isdecimal():
            raise ContextError(f"retry must be a count, got {retry!r}")
        values["retry_count"] = int(retry)

    return CallContext(**values)


def callback_url(base_url: str, ctx: CallContext) -> str:
    """Address of the webhook that will handle ``ctx.step``."""
    return f"{base_url.rstrip('/')}{PAYMENT_PATH}?{urlencode(encode_context(ctx))}"


def connect_url(base_url: str, ctx: CallContext) -> str:
    """Address of the human-escalation entry point for this caller."""
    params = {
        key: value
        for key, value in (
            ("caller_number", ctx.caller_number),
            ("customer_name", ctx.customer_name),
            ("forward_number", ctx.forward_number),
            ("call_log_id", ctx.call_log_id),
        )
        if value
    }
    query = f"?{urlencode(params)}" if params else ""
    return f"{base_url.rstrip('/')}{CONNECT_PATH}{query}"
