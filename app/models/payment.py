"""Payment database model."""

import datetime as dt
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.billing_period import MONEY_SCALE
from app.models.enums import PaymentSlot, PaymentStatus

if TYPE_CHECKING:
    from app.models.billing_period import BillingPeriod


class Payment(Base):
    """Payment settling the main or sub share of a billing period."""

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("billing_period_id", "slot", name="uq_billing_period_payment_slot"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    billing_period_id: Mapped[int] = mapped_column(
        ForeignKey("billing_periods.id", ondelete="CASCADE"), index=True
    )
    slot: Mapped[PaymentSlot] = mapped_column(String(10))
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=MONEY_SCALE))
    date: Mapped[dt.date] = mapped_column(default=lambda: dt.datetime.now(dt.UTC).date())
    status: Mapped[PaymentStatus] = mapped_column(String(20), default=PaymentStatus.PENDING)

    created_at: Mapped[dt.datetime] = mapped_column(default=lambda: dt.datetime.now(dt.UTC))
    updated_at: Mapped[dt.datetime] = mapped_column(
        default=lambda: dt.datetime.now(dt.UTC),
        onupdate=lambda: dt.datetime.now(dt.UTC),
    )

    billing_period: Mapped["BillingPeriod"] = relationship(back_populates="payments")
