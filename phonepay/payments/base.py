"""Abstract base class for card payment gateways.

Defines the charge request and the closed set of outcomes.  Raw gateway
codes are decoded once inside each implementation; the rest of the flow
only ever sees ``Approved``, ``Declined`` or ``GatewayError``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class ChargeRequest:
    """A card sale for a customer's outstanding balance."""

    amount_cents: int
    card_number: str
    expiry: str  # MMYY
    cvv: str
    zip: str = ""
    customer_id: str = ""
    customer_name: str = ""
    invoice: str = ""  # attempt key, lets the processor spot duplicates

    def __repr__(self) -> str:
        # Keep PAN and CVV out of logs and tracebacks.
        return (
            f"ChargeRequest(amount_cents={self.amount_cents}, "
            f"card=***{self.card_number[-4:]}, customer_id={self.customer_id!r})"
        )


@dataclass(frozen=True)
class Approved:
    transaction_id: str
    auth_code: str = ""


@dataclass(frozen=True)
class Declined:
    reason: str = "Card declined"


@dataclass(frozen=True)
class GatewayError:
    detail: str = "Payment processing error"


ChargeResult = Union[Approved, Declined, GatewayError]


class PaymentGateway(ABC):
    """Abstract card processor.

    Implementations must not retry on their own: a blind resend to a card
    network can charge the caller twice.  Whether to try again is the
    caller's decision, made in the ``retry`` step.
    """

    @abstractmethod
    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """Submit one sale.

        Returns:
            ``Approved`` with the processor's transaction reference,
            ``Declined`` with the processor's reason, or ``GatewayError``
            for anything that prevented a definite answer (transport
            failure, malformed response, missing configuration).
        """
