"""Read models for customer accounts and recorded payments."""

from datetime import datetime

from pydantic import BaseModel


class Account(BaseModel):
    """A customer's balance as read at one point in the call."""

    model_config = {"frozen": True}

    customer_id: str
    name: str = ""
    balance_cents: int = 0


class PaymentRecord(BaseModel):
    """One settled charge. Append-only; the unit of truth for a payment."""

    model_config = {"from_attributes": True}

    id: str
    customer_id: str
    amount_cents: int
    payment_method: str = "card"
    transaction_id: str
    attempt_key: str | None = None
    notes: str = ""
    created_at: datetime | None = None
