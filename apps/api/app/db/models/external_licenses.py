"""Staging mirror of the external license provider."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.enums import ExternalSyncStatus
from app.db.types import JSONType, Money


class ExternalLicense(Base):
    """
    One row per provider license, keyed by appid.

    Written only by the sync pipeline; always reflects the most recent
    successful fetch, never dashboard edits.
    """

    __tablename__ = "external_licenses"
    __table_args__ = (
        CheckConstraint("monthly_fee >= 0", name="monthly_fee_non_negative"),
        CheckConstraint("sms_balance >= 0", name="sms_balance_non_negative"),
        CheckConstraint("sms_purchased >= 0", name="sms_purchased_non_negative"),
        CheckConstraint("sms_sent >= 0", name="sms_sent_non_negative"),
        Index("idx_external_licenses_status", "status"),
        Index("idx_external_licenses_last_synced", "last_synced_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appid: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    countid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mid: Mapped[str | None] = mapped_column(String(100), nullable=True)
    dba: Mapped[str | None] = mapped_column(String(255), nullable=True)
    zip: Mapped[str | None] = mapped_column(String(10), nullable=True)
    status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    license_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    activate_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    coming_expired: Mapped[date | None] = mapped_column(Date, nullable=True)

    monthly_fee: Mapped[float] = mapped_column(
        Money(), default=0, server_default=text("0"), nullable=False
    )
    sms_balance: Mapped[float] = mapped_column(
        Money(), default=0, server_default=text("0"), nullable=False
    )
    sms_purchased: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    sms_sent: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )

    # Module entitlements, e.g. {"basic": true, "print_check": false}
    package: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_license: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sendbat_workspace: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_active: Mapped[datetime | None] = mapped_column(nullable=True)

    sync_status: Mapped[str] = mapped_column(
        String(20),
        default=ExternalSyncStatus.SYNCED.value,
        server_default=text(f"'{ExternalSyncStatus.SYNCED.value}'"),
        nullable=False,
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
