"""Customer/balance lookup and the idempotent ledger writer.

The balance column is a cache derived from the payment rows.  Writers
follow three rules:

  * a payment row is keyed by the gateway transaction id; recording the
    same id twice is a no-op that returns the first record;
  * the balance is only ever changed by a single conditional UPDATE
    flooring at zero, in the same transaction as the row insert, and only
    when the insert actually happened;
  * a different transaction under an already-recorded attempt key is a
    second real charge and raises ``DuplicateAttemptError``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from phonepay.ledger.db import Database
from phonepay.ledger.models import CustomerPaymentRow, CustomerRow
from phonepay.models.ledger import Account, PaymentRecord

log = logging.getLogger("phonepay.ledger")

IVR_NOTE = "Phone payment via IVR"


class DuplicateAttemptError(Exception):
    """A second, different transaction was settled for an already-recorded attempt.

    The card was charged twice for one attempt.  The extra charge is not
    recorded and needs manual reconciliation.
    """

    def __init__(self, attempt_key: str, recorded: str, incoming: str) -> None:
        super().__init__(
            f"attempt {attempt_key} already settled as {recorded}, got {incoming}"
        )
        self.attempt_key = attempt_key
        self.recorded_transaction_id = recorded
        self.transaction_id = incoming


def normalize_phone(number: str) -> str:
    """Last 10 digits of a phone number: '+1 (845) 376-2437' -> '8453762437'."""
    return re.sub(r"\D", "", number or "")[-10:]


def _account(row: CustomerRow) -> Account:
    return Account(
        customer_id=row.id,
        name=row.name or "",
        balance_cents=row.outstanding_balance_cents or 0,
    )


class CustomerDirectory:
    """Resolves callers to customer accounts. Every call re-reads the row."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_account(self, customer_id: str) -> Optional[Account]:
        async with self._db.session() as s:
            row = await s.get(CustomerRow, customer_id)
            return _account(row) if row else None

    async def find_by_phone(self, caller_number: str) -> Optional[Account]:
        wanted = normalize_phone(caller_number)
        if len(wanted) < 7:
            return None
        async with self._db.session() as s:
            # Stored numbers are free-form; narrow by the line number, then
            # compare normalized digits.
            result = await s.execute(
                select(CustomerRow)
                .where(CustomerRow.phone.contains(wanted[-4:]))
                .order_by(CustomerRow.id)
            )
            for row in result.scalars():
                if normalize_phone(row.phone) == wanted:
                    return _account(row)
        return None

    async def resolve(self, customer_id: Optional[str], caller_number: str) -> Optional[Account]:
        """Account for a call: by carried id if present, else by caller number."""
        if customer_id:
            return await self.get_account(customer_id)
        if caller_number:
            return await self.find_by_phone(caller_number)
        return None


@dataclass(frozen=True)
class AppliedPayment:
    record: PaymentRecord
    balance_cents: int
    created: bool


class LedgerWriter:
    """Append-only payment records plus the floor-at-zero balance update."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ── Reads ──────────────────────────────────────────────────

    async def find_payment(
        self,
        transaction_id: str = "",
        attempt_key: str = "",
    ) -> Optional[PaymentRecord]:
        """Look a settled charge up by transaction id or attempt key."""
        async with self._db.session() as s:
            row = await self._find(s, transaction_id, attempt_key)
            return PaymentRecord.model_validate(row) if row else None

    async def payments_for(self, customer_id: str) -> list[PaymentRecord]:
        async with self._db.session() as s:
            result = await s.execute(
                select(CustomerPaymentRow)
                .where(CustomerPaymentRow.customer_id == customer_id)
                .order_by(CustomerPaymentRow.created_at)
            )
            return [PaymentRecord.model_validate(r) for r in result.scalars()]

    async def total_paid(self, customer_id: str) -> int:
        async with self._db.session() as s:
            total = await s.scalar(
                select(func.coalesce(func.sum(CustomerPaymentRow.amount_cents), 0))
                .where(CustomerPaymentRow.customer_id == customer_id)
            )
            return int(total or 0)

    async def balance_of(self, customer_id: str) -> Optional[int]:
        async with self._db.session() as s:
            return await self._balance(s, customer_id)

    # ── Writes ─────────────────────────────────────────────────

    async def record_payment(
        self,
        customer_id: str,
        amount_cents: int,
        transaction_id: str,
        attempt_key: Optional[str] = None,
    ) -> tuple[PaymentRecord, bool]:
        """Append a payment row unless ``transaction_id`` is already recorded.

        Returns the record and whether this call created it.
        """
        applied = await self._apply(
            customer_id, amount_cents, transaction_id, attempt_key, decrement=False
        )
        return applied.record, applied.created

    async def decrement_balance(self, customer_id: str, amount_cents: int) -> int:
        """Set ``balance = max(0, balance - amount)`` and return the new balance."""
        async with self._db.session() as s:
            return await self._decrement(s, customer_id, amount_cents)

    async def apply_payment(
        self,
        customer_id: str,
        amount_cents: int,
        transaction_id: str,
        attempt_key: Optional[str] = None,
    ) -> AppliedPayment:
        """Record the payment and decrement the balance, exactly once per transaction."""
        return await self._apply(
            customer_id, amount_cents, transaction_id, attempt_key, decrement=True
        )

    # ── Internals ──────────────────────────────────────────────

    async def _apply(
        self,
        customer_id: str,
        amount_cents: int,
        transaction_id: str,
        attempt_key: Optional[str],
        decrement: bool,
    ) -> AppliedPayment:
        if amount_cents <= 0:
            raise ValueError(f"payment amount must be positive, got {amount_cents}")
        if not transaction_id:
            raise ValueError("transaction_id is required")

        try:
            async with self._db.session() as s:
                existing = await self._find(s, transaction_id, attempt_key)
                if existing is not None:
                    self._check_same_charge(existing, transaction_id)
                    log.info("Payment %s already recorded, no-op", transaction_id)
                    balance = await self._balance(s, existing.customer_id)
                    return AppliedPayment(
                        PaymentRecord.model_validate(existing), balance or 0, False
                    )

                row = CustomerPaymentRow(
                    customer_id=customer_id,
                    amount_cents=amount_cents,
                    payment_method="card",
                    payment_type="balance",
                    transaction_id=transaction_id,
                    attempt_key=attempt_key,
                    notes=IVR_NOTE,
                )
                s.add(row)
                await s.flush()

                if decrement:
                    balance = await self._decrement(s, customer_id, amount_cents)
                else:
                    balance = await self._balance(s, customer_id) or 0
                record = PaymentRecord.model_validate(row)
        except IntegrityError:
            # Lost a race with a concurrent delivery of the same payment.
            existing = await self.find_payment(transaction_id, attempt_key or "")
            if existing is None:
                raise
            self._check_same_charge(existing, transaction_id)
            log.info("Payment %s recorded concurrently, no-op", transaction_id)
            balance = await self.balance_of(existing.customer_id)
            return AppliedPayment(existing, balance or 0, False)

        log.info(
            "Payment recorded: customer=%s amount=%d txn=%s balance=%d",
            customer_id,
            amount_cents,
            transaction_id,
            balance,
        )
        return AppliedPayment(record, balance, True)

    @staticmethod
    def _check_same_charge(existing, transaction_id: str) -> None:
        # Only a repeat of the same transaction is idempotent; a different
        # transaction under the same attempt key is a second real charge.
        if existing.transaction_id != transaction_id:
            raise DuplicateAttemptError(
                existing.attempt_key or "", existing.transaction_id, transaction_id
            )

    @staticmethod
    async def _find(
        s: AsyncSession, transaction_id: str, attempt_key: Optional[str]
    ) -> Optional[CustomerPaymentRow]:
        # Transaction id first: an exact repeat must never be mistaken for a
        # different charge under the same attempt.
        for column, value in (
            (CustomerPaymentRow.transaction_id, transaction_id),
            (CustomerPaymentRow.attempt_key, attempt_key),
        ):
            if not value:
                continue
            result = await s.execute(select(CustomerPaymentRow).where(column == value))
            row = result.scalars().first()
            if row is not None:
                return row
        return None

    @staticmethod
    async def _balance(s: AsyncSession, customer_id: str) -> Optional[int]:
        return await s.scalar(
            select(CustomerRow.outstanding_balance_cents).where(CustomerRow.id == customer_id)
        )

    @staticmethod
    async def _decrement(s: AsyncSession, customer_id: str, amount_cents: int) -> int:
        if amount_cents < 0:
            raise ValueError(f"decrement must not be negative, got {amount_cents}")
        balance = CustomerRow.outstanding_balance_cents
        await s.execute(
            update(CustomerRow)
            .where(CustomerRow.id == customer_id)
            .values(
                outstanding_balance_cents=case(
                    (balance > amount_cents, balance - amount_cents),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        new_balance = await LedgerWriter._balance(s, customer_id)
        if new_balance is None:
            raise LookupError(f"customer {customer_id} not found")
        return new_balance
