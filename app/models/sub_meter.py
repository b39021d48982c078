"""SubMeter database model."""

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.billing_period import KWH_SCALE

if TYPE_CHECKING:
    from app.models.billing_period import BillingPeriod


class SubMeter(Base):
    """Sub-meter reading recorded with a billing period."""

    __tablename__ = "sub_meters"
    __table_args__ = (
        UniqueConstraint("billing_period_id", "label", name="uq_billing_period_sub_meter_label"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    billing_period_id: Mapped[int] = mapped_column(
        ForeignKey("billing_periods.id", ondelete="CASCADE"), index=True
    )
    label: Mapped[str] = mapped_column(String(100))
    reading: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=KWH_SCALE))
    previous_reading: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=KWH_SCALE))
    sub_kwh: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=KWH_SCALE))

    billing_period: Mapped["BillingPeriod"] = relationship(back_populates="sub_meters")
