"""Payment reconciliation.

Matches payments to the main/sub obligations of a billing period and derives
the period's status. A period is ``paid`` only when every required slot and
every occupied slot holds a successful payment; any other combination keeps
(or puts) it back to ``pending``. Periods with no obligation and no payment
are ``n/a``.
"""

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import DependencyFailure, SlotOccupied
from app.models.billing_period import BillingPeriod
from app.models.enums import PaymentSlot, PaymentStatus, PeriodStatus
from app.models.payment import Payment
from app.schemas.payment import PaymentCreate, PaymentUpdate
from app.services.auth import RequestContext

logger = logging.getLogger(__name__)


def required_slots(balance: Decimal, sub_kwh: Decimal) -> set[PaymentSlot]:
    """Slots that must be settled for a period to count as paid."""
    slots = set()
    if balance > 0:
        slots.add(PaymentSlot.MAIN)
    if sub_kwh > 0:
        slots.add(PaymentSlot.SUB)
    return slots


def derive_status(
    required: set[PaymentSlot],
    payments: Mapping[PaymentSlot, PaymentStatus | None],
) -> PeriodStatus:
    """Derive a period's status from the statuses of its slot payments.

    A payment counts even in a slot without an obligation: a failed or
    pending payment there keeps the period from being paid.
    """
    occupied = {slot for slot, payment_status in payments.items() if payment_status is not None}
    slots = required | occupied
    if not slots:
        return PeriodStatus.NOT_APPLICABLE
    if all(payments.get(slot) == PaymentStatus.SUCCESS for slot in slots):
        return PeriodStatus.PAID
    return PeriodStatus.PENDING


def ensure_slot_available(current: Payment | None, slot: PaymentSlot) -> None:
    """Raise ``SlotOccupied`` unless the slot is empty or holds a failed payment."""
    if current is not None and current.status != PaymentStatus.FAILED:
        raise SlotOccupied(slot.value)


def expected_amount(period: BillingPeriod, slot: PaymentSlot) -> Decimal:
    """Amount a payment in ``slot`` is expected to cover."""
    if slot == PaymentSlot.SUB:
        return period.sub_payment_amount()
    return period.balance


def reconcile(period: BillingPeriod) -> PeriodStatus:
    """Recompute and store ``period.status`` from its attached payments."""
    statuses = {PaymentSlot(p.slot): PaymentStatus(p.status) for p in period.payments}
    new_status = derive_status(required_slots(period.balance, period.sub_kwh), statuses)
    if new_status != period.status:
        logger.info(
            "Billing period %s status %s -> %s", period.id, period.status, new_status.value
        )
    period.status = new_status
    return new_status


def _get_owned_period(db: Session, ctx: RequestContext, period_id: int) -> BillingPeriod:
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


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise DependencyFailure(f"Could not {action}") from exc


def add_payment(db: Session, period: BillingPeriod, data: PaymentCreate) -> Payment:
    """Put a payment into a slot of ``period`` and reconcile, without committing.

    A failed payment already in the slot is replaced; any other payment makes
    the slot unavailable.
    """
    current = period.payment_for(data.slot)
    ensure_slot_available(current, data.slot)

    if current is not None:
        logger.info("Replacing failed %s payment %s of period %s", data.slot.value, current.id, period.id)
        period.payments.remove(current)
        db.delete(current)
        # The (period, slot) unique constraint needs the old row gone first
        db.flush()

    payment = Payment(
        slot=data.slot,
        amount=data.amount if data.amount is not None else expected_amount(period, data.slot),
        date=data.date or datetime.now(UTC).date(),
        status=data.status,
    )
    period.payments.append(payment)
    reconcile(period)
    return payment


def attach_payment(
    db: Session,
    ctx: RequestContext,
    period_id: int,
    data: PaymentCreate,
) -> Payment:
    """Attach a payment to the main or sub slot of a billing period."""
    period = _get_owned_period(db, ctx, period_id)
    payment = add_payment(db, period, data)
    _commit(db, "attach payment")
    db.refresh(payment)
    return payment


def get_payment(db: Session, ctx: RequestContext, payment_id: int) -> Payment:
    """Get one of the current user's payments."""
    payment = (
        db.query(Payment)
        .join(BillingPeriod)
        .filter(Payment.id == payment_id, BillingPeriod.user_id == ctx.user.id)
        .first()
    )
    if not payment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    return payment


def list_payments(db: Session, ctx: RequestContext) -> list[Payment]:
    """All payments of the current user, newest first."""
    return (
        db.query(Payment)
        .join(BillingPeriod)
        .filter(BillingPeriod.user_id == ctx.user.id)
        .order_by(Payment.date.desc(), Payment.id.desc())
        .all()
    )


def update_payment(
    db: Session,
    ctx: RequestContext,
    payment_id: int,
    data: PaymentUpdate,
) -> Payment:
    """Update a payment and reconcile its billing period."""
    payment = get_payment(db, ctx, payment_id)

    for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(payment, field, value)

    reconcile(payment.billing_period)
    _commit(db, "update payment")
    db.refresh(payment)
    return payment
