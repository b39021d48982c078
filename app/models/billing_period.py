"""BillingPeriod database model - one bill per reading cycle."""

import datetime as dt
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.enums import PaymentSlot, PeriodStatus

if TYPE_CHECKING:
    from app.models.payment import Payment
    from app.models.sub_meter import SubMeter
    from app.models.user import User

# Stored decimal places. Readings and rates are rounded to these on input so
# that money computed from them (KWH_SCALE + RATE_SCALE places) is stored
# exactly.
KWH_SCALE = 3
RATE_SCALE = 4
MONEY_SCALE = KWH_SCALE + RATE_SCALE


class BillingPeriod(Base):
    """A single billing cycle.

    ``balance`` is the household share: the whole bill minus the sub-metered
    consumption recoverable from sub-tenants, both priced at ``pay_per_kwh``.

    ``sub_reading_old`` and ``sub_reading_latest`` are sums over the
    sub-meters (null without any). A sub-meter whose reading went backwards
    counts with its latest reading as baseline, so the two sums always differ
    by exactly ``sub_kwh``. The per-meter rows keep the submitted values.
    """

    __tablename__ = "billing_periods"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    date: Mapped[dt.date] = mapped_column(index=True)

    total_kwh: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=KWH_SCALE))
    sub_kwh: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=KWH_SCALE), default=Decimal("0")
    )
    pay_per_kwh: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=RATE_SCALE))
    sub_reading_old: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=12, scale=KWH_SCALE), nullable=True
    )
    sub_reading_latest: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=12, scale=KWH_SCALE), nullable=True
    )
    balance: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=MONEY_SCALE))
    status: Mapped[PeriodStatus] = mapped_column(String(20), default=PeriodStatus.PENDING)

    created_at: Mapped[dt.datetime] = mapped_column(default=lambda: dt.datetime.now(dt.UTC))
    updated_at: Mapped[dt.datetime] = mapped_column(
        default=lambda: dt.datetime.now(dt.UTC),
        onupdate=lambda: dt.datetime.now(dt.UTC),
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="billing_periods")
    sub_meters: Mapped[list["SubMeter"]] = relationship(
        back_populates="billing_period",
        cascade="all, delete-orphan",
        order_by="SubMeter.id",
    )
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="billing_period",
        cascade="all, delete-orphan",
    )

    def payment_for(self, slot: PaymentSlot) -> "Payment | None":
        """Return the payment occupying ``slot``, if any."""
        return next((p for p in self.payments if p.slot == slot), None)

    def sub_payment_amount(self) -> Decimal:
        """Amount owed by sub-tenants at this period's rate."""
        return self.sub_kwh * self.pay_per_kwh
