"""Billing service: builds billing records from readings and manages them.

The builder is the single place where the split of a bill between the
household and its sub-tenants is computed:

    sub_kwh = sum(max(0, latest - old) for each sub-meter)
    balance = total_kwh * pay_per_kwh - sub_kwh * pay_per_kwh

Sub-tenants are billed ``sub_kwh * pay_per_kwh`` separately.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import DependencyFailure, InvalidPeriod, InvalidRate
from app.models.billing_period import RATE_SCALE, BillingPeriod
from app.models.payment import Payment
from app.models.sub_meter import SubMeter
from app.schemas.billing import BillingPeriodCreate, BillingPeriodUpdate, SubMeterInput
from app.services.auth import RequestContext
from app.services.readings import NormalizedReadings, normalize_readings
from app.services.reconciliation import derive_status, reconcile, required_slots

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeterRegressionWarning:
    """A sub-meter reading went backwards (e.g. the meter was reset)."""

    label: str
    old: Decimal
    latest: Decimal

    def __str__(self) -> str:
        return (
            f"Sub-meter '{self.label}' reading went down from {self.old} to {self.latest}; "
            "its consumption was counted as 0"
        )


@dataclass(frozen=True)
class SubMeterUsage:
    label: str
    reading: Decimal
    previous_reading: Decimal
    sub_kwh: Decimal


@dataclass
class BillingRecord:
    """Computed figures for one billing period."""

    total_kwh: Decimal
    sub_kwh: Decimal
    pay_per_kwh: Decimal
    balance: Decimal
    sub_payment_amount: Decimal
    sub_reading_old: Decimal | None
    sub_reading_latest: Decimal | None
    sub_meters: list[SubMeterUsage] = field(default_factory=list)
    warnings: list[MeterRegressionWarning] = field(default_factory=list)


def quantize_rate(value: Decimal) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-RATE_SCALE), rounding=ROUND_HALF_UP)


def calculate_pay_per_kwh(bill_amount: Decimal, total_kwh: Decimal) -> Decimal:
    """Derive the per-unit rate from an electricity bill amount."""
    if total_kwh <= 0:
        raise InvalidRate(Decimal("0"))
    return bill_amount / total_kwh


def resolve_rate(
    total_kwh: Decimal,
    pay_per_kwh: Decimal | None = None,
    bill_amount: Decimal | None = None,
) -> Decimal:
    """Pick the rate for a period: explicit, from the bill amount, or the default."""
    if pay_per_kwh is not None:
        return pay_per_kwh
    if bill_amount is not None:
        return calculate_pay_per_kwh(bill_amount, total_kwh)
    return settings.DEFAULT_PAY_PER_KWH


def build_billing_record(
    readings: NormalizedReadings,
    previous_readings: Mapping[str, Decimal],
    pay_per_kwh: Decimal,
) -> BillingRecord:
    """Compute consumption deltas and balances for one period.

    ``previous_readings`` maps sub-meter labels to the latest reading of the
    prior period. A reading submitted with an explicit previous value uses it;
    a sub-meter without any history starts from its own reading.

    The rate is rounded to the stored precision first, so the returned
    figures are exactly what gets persisted. The summed sub-meter baselines
    use the clamped value for a regressed meter, keeping
    ``sub_reading_latest - sub_reading_old == sub_kwh``.

    Raises:
        InvalidRate: if ``pay_per_kwh`` is not positive.
        InvalidPeriod: if sub-metered consumption exceeds the total.
    """
    pay_per_kwh = quantize_rate(pay_per_kwh)
    if pay_per_kwh <= 0:
        raise InvalidRate(pay_per_kwh)

    usages: list[SubMeterUsage] = []
    warnings: list[MeterRegressionWarning] = []
    for sub in readings.sub_meters:
        old = sub.previous_reading
        if old is None:
            old = previous_readings.get(sub.label, sub.reading)
        delta = sub.reading - old
        if delta < 0:
            warning = MeterRegressionWarning(label=sub.label, old=old, latest=sub.reading)
            logger.warning("%s", warning)
            warnings.append(warning)
            delta = Decimal("0")
        usages.append(
            SubMeterUsage(
                label=sub.label,
                reading=sub.reading,
                previous_reading=old,
                sub_kwh=delta,
            )
        )

    sub_kwh = sum((u.sub_kwh for u in usages), Decimal("0"))
    if readings.total_kwh < sub_kwh:
        raise InvalidPeriod(readings.total_kwh, sub_kwh)

    sub_reading_old = sub_reading_latest = None
    if usages:
        sub_reading_old = sum(
            (min(u.previous_reading, u.reading) for u in usages), Decimal("0")
        )
        sub_reading_latest = sum((u.reading for u in usages), Decimal("0"))

    return BillingRecord(
        total_kwh=readings.total_kwh,
        sub_kwh=sub_kwh,
        pay_per_kwh=pay_per_kwh,
        balance=readings.total_kwh * pay_per_kwh - sub_kwh * pay_per_kwh,
        sub_payment_amount=sub_kwh * pay_per_kwh,
        sub_reading_old=sub_reading_old,
        sub_reading_latest=sub_reading_latest,
        sub_meters=usages,
        warnings=warnings,
    )


def get_previous_period(
    db: Session,
    user_id: int,
    before: date,
    exclude_id: int | None = None,
) -> BillingPeriod | None:
    """Latest billing period of a user on or before ``before``."""
    query = db.query(BillingPeriod).filter(
        BillingPeriod.user_id == user_id,
        BillingPeriod.date <= before,
    )
    if exclude_id is not None:
        query = query.filter(BillingPeriod.id != exclude_id)
    return query.order_by(BillingPeriod.date.desc(), BillingPeriod.id.desc()).first()


def previous_sub_readings(period: BillingPeriod | None) -> dict[str, Decimal]:
    if period is None:
        return {}
    return {sub.label: sub.reading for sub in period.sub_meters}


def _apply_record(period: BillingPeriod, record: BillingRecord) -> None:
    period.total_kwh = record.total_kwh
    period.sub_kwh = record.sub_kwh
    period.pay_per_kwh = record.pay_per_kwh
    period.balance = record.balance
    period.sub_reading_old = record.sub_reading_old
    period.sub_reading_latest = record.sub_reading_latest
    period.sub_meters = [
        SubMeter(
            label=usage.label,
            reading=usage.reading,
            previous_reading=usage.previous_reading,
            sub_kwh=usage.sub_kwh,
        )
        for usage in record.sub_meters
    ]


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise DependencyFailure(f"Could not {action}") from exc


def add_billing_period(
    db: Session,
    ctx: RequestContext,
    data: BillingPeriodCreate,
) -> tuple[BillingPeriod, list[MeterRegressionWarning]]:
    """Build a new billing period and add it to the session without committing."""
    readings = normalize_readings(data.total_kwh, data.sub_meters)
    rate = resolve_rate(readings.total_kwh, data.pay_per_kwh, data.bill_amount)
    previous = get_previous_period(db, ctx.user.id, data.date)
    record = build_billing_record(readings, previous_sub_readings(previous), rate)

    period = BillingPeriod(user_id=ctx.user.id, date=data.date)
    _apply_record(period, record)
    period.status = derive_status(required_slots(record.balance, record.sub_kwh), {})
    db.add(period)
    return period, record.warnings


def create_billing_period(
    db: Session,
    ctx: RequestContext,
    data: BillingPeriodCreate,
) -> tuple[BillingPeriod, list[MeterRegressionWarning]]:
    """Record a new billing period for the current user."""
    period, warnings = add_billing_period(db, ctx, data)
    _commit(db, "create billing period")
    db.refresh(period)
    logger.info("Created billing period %s for user %s", period.id, ctx.user.id)
    return period, warnings


def get_billing_period(db: Session, ctx: RequestContext, period_id: int) -> BillingPeriod:
    """Get one of the current user's billing periods."""
    period = (
        db.query(BillingPeriod)
        .filter(BillingPeriod.id == period_id, BillingPeriod.user_id == ctx.user.id)
        .first()
    )
    if not period:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Billing period not found",
        )
    return period


def list_billing_periods(db: Session, ctx: RequestContext) -> list[BillingPeriod]:
    """All billing periods of the current user, newest first."""
    return (
        db.query(BillingPeriod)
        .filter(BillingPeriod.user_id == ctx.user.id)
        .order_by(BillingPeriod.date.desc(), BillingPeriod.id.desc())
        .all()
    )


def rebuild_billing_period(
    db: Session,
    ctx: RequestContext,
    period: BillingPeriod,
    data: BillingPeriodUpdate,
) -> list[MeterRegressionWarning]:
    """Apply an update to ``period`` and rebuild its figures without committing.

    Omitted fields keep their stored values. Attached payments are kept and
    the status is reconciled against the new figures.
    """
    period_date = data.date or period.date
    total_kwh = data.total_kwh if data.total_kwh is not None else period.total_kwh
    if data.sub_meters is not None:
        sub_meters = data.sub_meters
    else:
        sub_meters = [
            SubMeterInput(label=s.label, reading=s.reading, previous_reading=s.previous_reading)
            for s in period.sub_meters
        ]

    readings = normalize_readings(total_kwh, sub_meters)
    if data.pay_per_kwh is None and data.bill_amount is None:
        rate = period.pay_per_kwh
    else:
        rate = resolve_rate(readings.total_kwh, data.pay_per_kwh, data.bill_amount)
    previous = get_previous_period(db, ctx.user.id, period_date, exclude_id=period.id)
    record = build_billing_record(readings, previous_sub_readings(previous), rate)

    period.date = period_date
    # Old rows must be gone before re-inserting the same labels
    period.sub_meters.clear()
    db.flush()
    _apply_record(period, record)
    reconcile(period)
    return record.warnings


def update_billing_period(
    db: Session,
    ctx: RequestContext,
    period_id: int,
    data: BillingPeriodUpdate,
) -> tuple[BillingPeriod, list[MeterRegressionWarning]]:
    """Update a billing period and rebuild its figures."""
    period = get_billing_period(db, ctx, period_id)
    warnings = rebuild_billing_period(db, ctx, period, data)
    _commit(db, "update billing period")
    db.refresh(period)
    return period, warnings


def delete_billing_period(db: Session, ctx: RequestContext, period_id: int) -> None:
    """Delete a billing period together with its payments and sub-meters.

    Payments go first, then sub-meters, then the period, all in one
    transaction: either every row is gone or none is.
    """
    period = get_billing_period(db, ctx, period_id)
    try:
        db.query(Payment).filter(Payment.billing_period_id == period.id).delete(
            synchronize_session=False
        )
        db.query(SubMeter).filter(SubMeter.billing_period_id == period.id).delete(
            synchronize_session=False
        )
        db.expire(period, ["payments", "sub_meters"])
        db.delete(period)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to delete billing period %s", period_id)
        raise DependencyFailure("Could not delete billing period") from exc
    logger.info("Deleted billing period %s for user %s", period_id, ctx.user.id)
