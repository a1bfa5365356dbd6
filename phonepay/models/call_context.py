"""Pydantic model for the state carried between payment-flow callbacks."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Step(str, Enum):
    """A non-terminal point in the payment flow.

    The value is the wire name used in the ``step`` query parameter.  A
    callback carrying ``step=X`` is handled by step X, which consumes the
    digits delivered with that callback.
    """

    CHECK_BALANCE = "check_balance"
    SELECT_AMOUNT = "select_amount"
    CUSTOM_AMOUNT = "custom_amount"
    ENTER_CARD = "enter_card"
    ENTER_EXPIRY = "enter_expiry"
    ENTER_CVV = "enter_cvv"
    ENTER_ZIP = "enter_zip"
    PROCESS_PAYMENT = "process_payment"
    RETRY = "retry"


class Terminal(str, Enum):
    """Where a call leaves the automated flow."""

    PAYMENT_CONFIRMED = "payment_confirmed"
    CONNECT_HUMAN = "connect_human"
    HANGUP = "hangup"


class CallContext(BaseModel):
    """Everything needed to resume the payment flow at any step.

    Never stored server-side: rebuilt from the callback's query string on
    every webhook and re-serialized into the next callback address.
    Instances are immutable; transitions produce updated copies.
    """

    model_config = {"frozen": True}

    caller_number: str = ""
    customer_id: Optional[str] = None
    customer_name: str = ""
    forward_number: str = ""
    call_log_id: str = ""
    step: Step = Step.CHECK_BALANCE

    # Collected so far
    amount_cents: Optional[int] = None
    card_number: Optional[str] = None
    expiry: Optional[str] = None
    cvv: Optional[str] = None
    zip: Optional[str] = None

    retry_count: int = 0

    @property
    def retry_flag(self) -> bool:
        return self.retry_count > 0

    @property
    def has_card_details(self) -> bool:
        """True once every field the gateway needs has been collected."""
        return all(
            (self.amount_cents, self.card_number, self.expiry, self.cvv, self.zip)
        )

    def at(self, step: Step, **changes) -> "CallContext":
        """Return a copy positioned at ``step`` with ``changes`` applied."""
        return self.model_copy(update={"step": step, **changes})

    def without_card_details(self) -> "CallContext":
        """Drop card, expiry, CVV and ZIP; keep amount and identity."""
        return self.model_copy(
            update={"card_number": None, "expiry": None, "cvv": None, "zip": None}
        )
