"""Billing period schemas."""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, model_validator

from app.models.enums import PeriodStatus
from app.schemas.payment import PaymentResponse


class SubMeterInput(BaseModel):
    """A sub-meter reading as submitted from the reading form.

    Range and uniqueness checks happen in the reading normalizer so that every
    offending field is reported at once.
    """

    label: str
    reading: Decimal
    previous_reading: Decimal | None = None


class BillingPeriodCreate(BaseModel):
    """Schema for recording a new billing period.

    Give either ``pay_per_kwh`` or the electricity bill amount ``bill_amount``;
    with neither, the configured default rate applies.
    """

    date: dt.date
    total_kwh: Decimal
    pay_per_kwh: Decimal | None = None
    bill_amount: Decimal | None = None
    sub_meters: list[SubMeterInput] = []

    @model_validator(mode="after")
    def check_single_rate_source(self) -> "BillingPeriodCreate":
        """Reject requests that give both a rate and a bill amount."""
        if self.pay_per_kwh is not None and self.bill_amount is not None:
            raise ValueError("Give either pay_per_kwh or bill_amount, not both")
        return self


class BillingPeriodUpdate(BaseModel):
    """Schema for updating a billing period; omitted fields keep their value."""

    date: dt.date | None = None
    total_kwh: Decimal | None = None
    pay_per_kwh: Decimal | None = None
    bill_amount: Decimal | None = None
    sub_meters: list[SubMeterInput] | None = None

    @model_validator(mode="after")
    def check_single_rate_source(self) -> "BillingPeriodUpdate":
        """Reject requests that give both a rate and a bill amount."""
        if self.pay_per_kwh is not None and self.bill_amount is not None:
            raise ValueError("Give either pay_per_kwh or bill_amount, not both")
        return self


class SubMeterResponse(BaseModel):
    """Sub-meter row of a billing period."""

    id: int
    label: str
    reading: Decimal
    previous_reading: Decimal
    sub_kwh: Decimal

    model_config = {"from_attributes": True}


class BillingPeriodResponse(BaseModel):
    """Schema for billing period response."""

    id: int
    user_id: int
    date: dt.date
    total_kwh: Decimal
    sub_kwh: Decimal
    pay_per_kwh: Decimal
    sub_reading_old: Decimal | None
    sub_reading_latest: Decimal | None
    balance: Decimal
    status: PeriodStatus
    sub_meters: list[SubMeterResponse]
    payments: list[PaymentResponse]
    created_at: dt.datetime
    updated_at: dt.datetime
    warnings: list[str] = []

    model_config = {"from_attributes": True}
