from .base import (
    Approved,
    ChargeRequest,
    ChargeResult,
    Declined,
    GatewayError,
    PaymentGateway,
)

__all__ = [
    "Approved",
    "ChargeRequest",
    "ChargeResult",
    "Declined",
    "GatewayError",
    "PaymentGateway",
]
