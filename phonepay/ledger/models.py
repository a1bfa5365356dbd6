"""SQLAlchemy ORM tables for the customer ledger.

``customers`` is owned by the back-office CRM; this service only reads it
and applies the floor-at-zero balance decrement.  ``customer_payments`` is
append-only: one row per settled charge, unique on the gateway
transaction id.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class CustomerRow(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(32), index=True, default="")
    outstanding_balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CustomerPaymentRow(Base):
    __tablename__ = "customer_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id"), nullable=False, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="card")
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="balance")
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    attempt_key: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    notes: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
