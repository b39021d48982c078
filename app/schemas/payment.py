"""Payment schemas."""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.enums import PaymentSlot, PaymentStatus


class PaymentCreate(BaseModel):
    """Schema for attaching a payment to a billing period slot.

    When ``amount`` is omitted the slot's expected amount is used.
    """

    slot: PaymentSlot
    amount: Decimal | None = Field(default=None, ge=0)
    date: dt.date | None = None
    status: PaymentStatus = PaymentStatus.PENDING


class PaymentUpdate(BaseModel):
    """Schema for updating a payment."""

    amount: Decimal | None = Field(default=None, ge=0)
    date: dt.date | None = None
    status: PaymentStatus | None = None


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    id: int
    billing_period_id: int
    slot: PaymentSlot
    amount: Decimal
    date: dt.date
    status: PaymentStatus
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}
