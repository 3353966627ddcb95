"""Internal license models used by the dashboard."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import DEFAULT_LICENSE_STATUS, DEFAULT_LICENSE_TERM
from app.db.types import JSONType, Money

DEFAULT_PRODUCT = "ABC Business Suite"
DEFAULT_PLAN = "Basic"


class License(Base):
    """
    Internal system of record for a license.

    appid correlates the row with external_licenses; it is NULL for
    licenses created only in the dashboard. Deleting a license moves it
    to status "revoked" instead of removing the row.
    """

    __tablename__ = "licenses"
    __table_args__ = (
        CheckConstraint("sms_balance >= 0", name="sms_balance_non_negative"),
        CheckConstraint("seats_total >= 0", name="seats_total_non_negative"),
        CheckConstraint("seats_used >= 0", name="seats_used_non_negative"),
        Index("idx_licenses_status", "status"),
        Index("idx_licenses_due_date", "due_date"),
        Index("idx_licenses_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    appid: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)

    product: Mapped[str] = mapped_column(
        String(255), default=DEFAULT_PRODUCT, nullable=False
    )
    plan: Mapped[str] = mapped_column(String(255), default=DEFAULT_PLAN, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_LICENSE_STATUS.value,
        server_default=text(f"'{DEFAULT_LICENSE_STATUS.value}'"),
        nullable=False,
    )
    term: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_LICENSE_TERM.value,
        server_default=text(f"'{DEFAULT_LICENSE_TERM.value}'"),
        nullable=False,
    )
    seats_total: Mapped[int] = mapped_column(
        Integer, default=1, server_default=text("1"), nullable=False
    )
    seats_used: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )

    starts_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancel_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_active: Mapped[datetime | None] = mapped_column(nullable=True)

    dba: Mapped[str | None] = mapped_column(String(255), nullable=True)
    zip: Mapped[str | None] = mapped_column(String(10), nullable=True)
    last_payment: Mapped[float] = mapped_column(
        Money(), default=0, server_default=text("0"), nullable=False
    )

    sms_purchased: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    sms_sent: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    sms_balance: Mapped[float] = mapped_column(
        Money(), default=0, server_default=text("0"), nullable=False
    )

    agents: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    agents_name: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    agents_cost: Mapped[float] = mapped_column(
        Money(), default=0, server_default=text("0"), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Stamped by reconciliation
    external_sync_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_external_sync: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    sms_payments: Mapped[list["SmsPayment"]] = relationship(
        back_populates="license",
        cascade="all, delete-orphan",
        order_by="SmsPayment.paid_at.desc()",
    )


class SmsPayment(Base):
    """Ledger entry for an SMS balance top-up."""

    __tablename__ = "sms_payments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="amount_non_negative"),
        CheckConstraint("sms_count >= 0", name="sms_count_non_negative"),
        Index("idx_sms_payments_license", "license_id", "paid_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    license_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[float] = mapped_column(Money(), nullable=False)
    sms_count: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    license: Mapped[License] = relationship(back_populates="sms_payments")
