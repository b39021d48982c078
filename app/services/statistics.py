"""Statistics aggregation.

``StatisticsAggregator`` folds the whole data store into a ``StatsSnapshot``
for the live dashboard feed. Each figure comes from its own source query; a
failing source keeps its last known value so the rest of the snapshot still
updates.

The per-user summaries at the bottom of the module work on a user's own
billing history.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from app.models.billing_period import BillingPeriod
from app.models.enums import PaymentSlot, PaymentStatus
from app.models.payment import Payment
from app.models.user import User
from app.schemas.stats import (
    BillingSummary,
    ConsumptionSummary,
    EnergyUsed,
    PaymentsAmount,
    StatsSnapshot,
)
from app.services.formatting import format_currency, format_energy, get_energy_unit

logger = logging.getLogger(__name__)

Source = Callable[[], Any]

FIELDS = ("user_count", "energy_total", "billing_count", "payments_total")


def count_users(db: Session) -> int:
    return db.query(func.count(User.id)).scalar() or 0


def total_energy(db: Session) -> Decimal:
    total = db.query(func.sum(BillingPeriod.total_kwh)).scalar()
    return Decimal(str(total)) if total is not None else Decimal("0")


def count_billing_periods(db: Session) -> int:
    return db.query(func.count(BillingPeriod.id)).scalar() or 0


def total_successful_payments(db: Session) -> Decimal:
    total = (
        db.query(func.sum(Payment.amount))
        .filter(Payment.status == PaymentStatus.SUCCESS.value)
        .scalar()
    )
    return Decimal(str(total)) if total is not None else Decimal("0")


def _with_session(session_factory: sessionmaker, query: Callable[[Session], Any]) -> Source:
    def run() -> Any:
        with session_factory() as db:
            return query(db)

    return run


def database_sources(session_factory: sessionmaker) -> dict[str, Source]:
    """Source queries over the data store, each with its own session."""
    return {
        "user_count": _with_session(session_factory, count_users),
        "energy_total": _with_session(session_factory, total_energy),
        "billing_count": _with_session(session_factory, count_billing_periods),
        "payments_total": _with_session(session_factory, total_successful_payments),
    }


class StatisticsAggregator:
    """Recomputes the global statistics snapshot on demand."""

    def __init__(self, sources: dict[str, Source]) -> None:
        missing = set(FIELDS) - set(sources)
        if missing:
            raise ValueError(f"Missing statistics sources: {sorted(missing)}")
        self.sources = sources
        self.last_known: dict[str, Any] = {
            "user_count": 0,
            "energy_total": Decimal("0"),
            "billing_count": 0,
            "payments_total": Decimal("0"),
        }

    async def collect(self) -> dict[str, Any]:
        """Run all sources concurrently and merge results with fallbacks."""
        results = await asyncio.gather(
            *(run_in_threadpool(self.sources[name]) for name in FIELDS),
            return_exceptions=True,
        )
        for name, result in zip(FIELDS, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Statistics source %s failed, keeping last known value: %s", name, result
                )
                continue
            self.last_known[name] = result
        return dict(self.last_known)

    async def snapshot(self) -> StatsSnapshot:
        values = await self.collect()
        return build_snapshot(**values)


def build_snapshot(
    user_count: int,
    energy_total: Decimal,
    billing_count: int,
    payments_total: Decimal,
) -> StatsSnapshot:
    """Assemble a snapshot with formatted values."""
    return StatsSnapshot(
        user_count=user_count,
        energy_used=EnergyUsed(
            total=float(energy_total),
            formatted=format_energy(energy_total),
            energy_unit=get_energy_unit(energy_total),
        ),
        billing_count=billing_count,
        payments_amount=PaymentsAmount(
            total=float(payments_total),
            formatted=format_currency(payments_total),
        ),
    )


def _span_days(periods: Sequence[BillingPeriod]) -> Decimal:
    dates = [p.date for p in periods]
    return Decimal(max(1, (max(dates) - min(dates)).days))


def _latest(periods: Sequence[BillingPeriod]) -> BillingPeriod:
    return max(periods, key=lambda p: (p.date, p.id))


def compute_consumption_summary(periods: Sequence[BillingPeriod]) -> ConsumptionSummary:
    """Consumption figures for one user's billing history."""
    if not periods:
        return ConsumptionSummary(
            total_kwh=Decimal("0"),
            average_daily_kwh=Decimal("0"),
            total_sub_meters=0,
            latest_reading=Decimal("0"),
        )

    total_kwh = sum((p.total_kwh for p in periods), Decimal("0"))
    labels = {sub.label.casefold() for p in periods for sub in p.sub_meters}
    return ConsumptionSummary(
        total_kwh=total_kwh,
        average_daily_kwh=total_kwh / _span_days(periods),
        total_sub_meters=len(labels),
        latest_reading=_latest(periods).total_kwh,
    )


def compute_billing_summary(periods: Sequence[BillingPeriod]) -> BillingSummary:
    """Money figures for one user's billing history.

    Only successful payments count. "Returns" are what sub-tenants paid back;
    ``one_day_returns`` covers the latest period alone.
    """
    zero = Decimal("0")
    if not periods:
        return BillingSummary(
            current=zero,
            invested=zero,
            total_returns=zero,
            net_returns=zero,
            one_day_returns=zero,
            average_daily_return=zero,
            average_monthly_return=zero,
        )

    settled = [
        p for period in periods for p in period.payments if p.status == PaymentStatus.SUCCESS
    ]
    invested = sum((p.amount for p in settled), zero)
    total_returns = sum((p.amount for p in settled if p.slot == PaymentSlot.SUB), zero)
    latest = _latest(periods)
    one_day_returns = sum(
        (
            p.amount
            for p in latest.payments
            if p.slot == PaymentSlot.SUB and p.status == PaymentStatus.SUCCESS
        ),
        zero,
    )
    days = _span_days(periods)
    return BillingSummary(
        current=latest.balance,
        invested=invested,
        total_returns=total_returns,
        net_returns=total_returns / invested * 100 if invested > 0 else zero,
        one_day_returns=one_day_returns,
        average_daily_return=total_returns / days,
        average_monthly_return=total_returns / (days / 30),
    )
