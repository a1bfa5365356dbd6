"""Tests for customer lookup and the idempotent ledger writer (temp SQLite file)."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from phonepay.ledger.db import Database, to_async_url
from phonepay.ledger.models import CustomerRow
from phonepay.ledger.store import (
    IVR_NOTE,
    CustomerDirectory,
    DuplicateAttemptError,
    LedgerWriter,
    normalize_phone,
)


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    await database.init()
    yield database
    await database.close()


async def _add_customer(db, customer_id="c1", name="Jane Doe",
                        phone="(845) 376-2437", balance_cents=4217):
    async with db.session() as s:
        s.add(CustomerRow(
            id=customer_id, name=name, phone=phone,
            outstanding_balance_cents=balance_cents,
        ))


class TestUrls:
    def test_async_driver_mapping(self):
        assert to_async_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"
        assert to_async_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
        assert to_async_url("postgres://u@h/db") == "postgresql+asyncpg://u@h/db"
        assert to_async_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"

    def test_normalize_phone(self):
        assert normalize_phone("+1 (845) 376-2437") == "8453762437"
        assert normalize_phone("845.376.2437") == "8453762437"
        assert normalize_phone("") == ""


class TestCustomerDirectory:
    @pytest.mark.asyncio
    async def test_get_account(self, db):
        await _add_customer(db)
        account = await CustomerDirectory(db).get_account("c1")
        assert account.customer_id == "c1"
        assert account.name == "Jane Doe"
        assert account.balance_cents == 4217

    @pytest.mark.asyncio
    async def test_get_missing(self, db):
        assert await CustomerDirectory(db).get_account("nobody") is None

    @pytest.mark.asyncio
    async def test_find_by_caller_number(self, db):
        await _add_customer(db)
        await _add_customer(db, customer_id="c2", phone="555-000-2437", balance_cents=0)
        account = await CustomerDirectory(db).find_by_phone("+18453762437")
        assert account is not None
        assert account.customer_id == "c1"

    @pytest.mark.asyncio
    async def test_unknown_or_short_number(self, db):
        await _add_customer(db)
        directory = CustomerDirectory(db)
        assert await directory.find_by_phone("+12125550199") is None
        assert await directory.find_by_phone("2437") is None

    @pytest.mark.asyncio
    async def test_resolve_prefers_carried_id(self, db):
        await _add_customer(db)
        await _add_customer(db, customer_id="c2", phone="2125550199")
        account = await CustomerDirectory(db).resolve("c2", "+18453762437")
        assert account.customer_id == "c2"


class TestLedgerWriter:
    @pytest.mark.asyncio
    async def test_apply_payment(self, db):
        await _add_customer(db, balance_cents=5000)
        ledger = LedgerWriter(db)

        applied = await ledger.apply_payment("c1", 1000, "TXN1", "CA1:0")
        assert applied.created is True
        assert applied.balance_cents == 4000
        assert applied.record.transaction_id == "TXN1"
        assert applied.record.amount_cents == 1000
        assert applied.record.payment_method == "card"
        assert applied.record.notes == IVR_NOTE
        assert applied.record.created_at is not None

    @pytest.mark.asyncio
    async def test_same_transaction_applied_once(self, db):
        await _add_customer(db, balance_cents=5000)
        ledger = LedgerWriter(db)

        await ledger.apply_payment("c1", 1000, "TXN1")
        again = await ledger.apply_payment("c1", 1000, "TXN1")

        assert again.created is False
        assert again.balance_cents == 4000
        assert await ledger.balance_of("c1") == 4000
        assert len(await ledger.payments_for("c1")) == 1

    @pytest.mark.asyncio
    async def test_same_attempt_and_transaction_applied_once(self, db):
        await _add_customer(db, balance_cents=5000)
        ledger = LedgerWriter(db)

        await ledger.apply_payment("c1", 1000, "TXN1", "CA1:0")
        again = await ledger.apply_payment("c1", 1000, "TXN1", "CA1:0")

        assert again.created is False
        assert await ledger.balance_of("c1") == 4000

    @pytest.mark.asyncio
    async def test_second_transaction_for_attempt_is_not_swallowed(self, db):
        await _add_customer(db, balance_cents=5000)
        ledger = LedgerWriter(db)

        await ledger.apply_payment("c1", 1000, "TXN1", "CA1:0")
        with pytest.raises(DuplicateAttemptError) as exc_info:
            await ledger.apply_payment("c1", 1000, "TXN2", "CA1:0")

        assert exc_info.value.attempt_key == "CA1:0"
        assert exc_info.value.recorded_transaction_id == "TXN1"
        assert exc_info.value.transaction_id == "TXN2"
        assert await ledger.balance_of("c1") == 4000
        assert await ledger.find_payment(transaction_id="TXN2") is None

    @pytest.mark.asyncio
    async def test_balance_floors_at_zero(self, db):
        await _add_customer(db, balance_cents=500)
        applied = await LedgerWriter(db).apply_payment("c1", 1000, "TXN1")
        assert applied.balance_cents == 0

    @pytest.mark.asyncio
    async def test_record_payment_leaves_balance(self, db):
        await _add_customer(db, balance_cents=5000)
        ledger = LedgerWriter(db)

        record, created = await ledger.record_payment("c1", 1000, "TXN1")
        assert created is True
        assert record.transaction_id == "TXN1"
        assert await ledger.balance_of("c1") == 5000

        _, created = await ledger.record_payment("c1", 1000, "TXN1")
        assert created is False

    @pytest.mark.asyncio
    async def test_decrement_balance(self, db):
        await _add_customer(db, balance_cents=5000)
        ledger = LedgerWriter(db)
        assert await ledger.decrement_balance("c1", 1234) == 3766
        assert await ledger.decrement_balance("c1", 9999) == 0

    @pytest.mark.asyncio
    async def test_decrement_missing_customer(self, db):
        with pytest.raises(LookupError):
            await LedgerWriter(db).decrement_balance("nobody", 100)

    @pytest.mark.asyncio
    async def test_apply_for_missing_customer_rolls_back(self, db):
        ledger = LedgerWriter(db)
        with pytest.raises(LookupError):
            await ledger.apply_payment("nobody", 100, "TXN1")
        assert await ledger.find_payment(transaction_id="TXN1") is None

    @pytest.mark.asyncio
    async def test_rejects_bad_input(self, db):
        await _add_customer(db)
        ledger = LedgerWriter(db)
        with pytest.raises(ValueError):
            await ledger.apply_payment("c1", 0, "TXN1")
        with pytest.raises(ValueError):
            await ledger.apply_payment("c1", 100, "")

    @pytest.mark.asyncio
    async def test_lookups(self, db):
        await _add_customer(db, balance_cents=10000)
        ledger = LedgerWriter(db)
        await ledger.apply_payment("c1", 1000, "TXN1", "CA1:0")
        await ledger.apply_payment("c1", 2500, "TXN2", "CA2:0")

        assert (await ledger.find_payment(attempt_key="CA2:0")).transaction_id == "TXN2"
        assert (await ledger.find_payment(transaction_id="TXN1")).attempt_key == "CA1:0"
        assert await ledger.find_payment() is None
        assert await ledger.total_paid("c1") == 3500
        assert await ledger.balance_of("c1") == 6500
        assert [p.transaction_id for p in await ledger.payments_for("c1")] == ["TXN1", "TXN2"]
