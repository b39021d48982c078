"""Bulk import schemas.

Import files are often exports of other tools, so every field also accepts
its camelCase spelling, and the energy fields the ``kWh`` spellings found in
older exports.
"""

import datetime as dt
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, model_validator

from app.schemas.billing import BillingPeriodCreate, SubMeterInput
from app.schemas.payment import PaymentCreate


class ImportSubMeter(SubMeterInput):
    previous_reading: Decimal | None = Field(
        default=None,
        validation_alias=AliasChoices("previous_reading", "previousReading"),
    )


class ImportBillingPeriod(BillingPeriodCreate):
    """A billing period as found in an import file."""

    total_kwh: Decimal = Field(
        validation_alias=AliasChoices("total_kwh", "totalKwh", "totalkWh", "total_kWh"),
    )
    pay_per_kwh: Decimal | None = Field(
        default=None,
        validation_alias=AliasChoices("pay_per_kwh", "payPerKwh", "payPerkWh", "pay_per_kWh"),
    )
    bill_amount: Decimal | None = Field(
        default=None,
        validation_alias=AliasChoices("bill_amount", "billAmount"),
    )
    sub_meters: list[ImportSubMeter] = Field(
        default_factory=list,
        validation_alias=AliasChoices("sub_meters", "subMeters"),
    )


class PeriodReference(BaseModel):
    """Points an imported item at a billing period, by id or by date."""

    billing_period_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("billing_period_id", "billingPeriodId"),
    )
    period_date: dt.date | None = Field(
        default=None,
        validation_alias=AliasChoices("period_date", "periodDate"),
    )

    @model_validator(mode="after")
    def check_reference(self) -> "PeriodReference":
        if self.billing_period_id is None and self.period_date is None:
            raise ValueError("billing_period_id or period_date is required")
        return self


class ImportSubMeterEntry(PeriodReference, ImportSubMeter):
    """A sub-meter reading to add to an existing billing period."""


class ImportPayment(PeriodReference, PaymentCreate):
    """A payment to attach to a billing period; the amount is mandatory."""

    amount: Decimal = Field(ge=0)


class ImportIssue(BaseModel):
    item: Any
    reason: str


class CollectionReport(BaseModel):
    """Outcome of importing one collection."""

    added: list[dict[str, Any]] = []
    skipped: list[ImportIssue] = []
    errors: list[ImportIssue] = []


class ImportReport(BaseModel):
    billing_periods: CollectionReport = Field(default_factory=CollectionReport)
    sub_meters: CollectionReport = Field(default_factory=CollectionReport)
    payments: CollectionReport = Field(default_factory=CollectionReport)


class ImportSummary(BaseModel):
    """Item counts of an import payload, for a preview before importing."""

    billing_periods: int
    sub_meters: int
    payments: int
