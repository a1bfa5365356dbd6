"""Data models for the payment flow."""

from .call_context import CallContext, Step, Terminal
from .ledger import Account, PaymentRecord

__all__ = ["Account", "CallContext", "PaymentRecord", "Step", "Terminal"]
