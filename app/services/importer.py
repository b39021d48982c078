"""Bulk import of billing history.

An import payload is a JSON object with up to three collections: billing
periods, sub-meter readings for existing periods, and payments. A bare list
is taken as a list of billing periods. Every item goes through the same
normalizer, builder and reconciliation rules as the interactive endpoints.
Items that cannot be imported are reported as skipped (already present) or
as errors; everything else is committed in a single transaction.

Periods are imported oldest first so that each picks up the sub-meter
readings of the one before it. Periods already stored are not rebuilt.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    DependencyFailure,
    PowertrackrError,
    ReadingValidationError,
    SlotOccupied,
)
from app.models.billing_period import BillingPeriod
from app.schemas.billing import BillingPeriodUpdate, SubMeterInput
from app.schemas.imports import (
    CollectionReport,
    ImportBillingPeriod,
    ImportIssue,
    ImportPayment,
    ImportReport,
    ImportSubMeterEntry,
    ImportSummary,
    PeriodReference,
)
from app.services import billing as billing_service
from app.services.auth import RequestContext
from app.services.reconciliation import add_payment

logger = logging.getLogger(__name__)

PERIOD_KEYS = (
    "billing_periods",
    "billingPeriods",
    "billing_infos",
    "billingInfos",
    "billing_info",
    "billingInfo",
    "items",
)
SUB_METER_KEYS = ("sub_meters", "subMeters", "sub_meter", "subMeter")
PAYMENT_KEYS = ("payments", "payment")

Payload = Mapping[str, Any] | Sequence[Any]


def _as_mapping(payload: Payload) -> Mapping[str, Any]:
    if isinstance(payload, Mapping):
        return payload
    return {"billing_periods": list(payload)}


def _collection(payload: Mapping[str, Any], keys: Sequence[str]) -> list[Any]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return []


def summarize_import(payload: Payload) -> ImportSummary:
    """Count the items of each collection without importing anything."""
    payload = _as_mapping(payload)
    return ImportSummary(
        billing_periods=len(_collection(payload, PERIOD_KEYS)),
        sub_meters=len(_collection(payload, SUB_METER_KEYS)),
        payments=len(_collection(payload, PAYMENT_KEYS)),
    )


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'item'}: {error['msg']}"
            for error in exc.errors()
        )
    if isinstance(exc, ReadingValidationError):
        return "; ".join(f"{error.field}: {error.message}" for error in exc.errors)
    if isinstance(exc, PowertrackrError):
        return exc.message
    return str(exc)


def _parse(
    items: list[Any],
    model: type[BaseModel],
    result: CollectionReport,
) -> list[tuple[Any, Any]]:
    parsed = []
    for raw in items:
        try:
            parsed.append((raw, model.model_validate(raw)))
        except ValidationError as exc:
            result.errors.append(ImportIssue(item=raw, reason=_describe(exc)))
    return parsed


def _find_period(
    db: Session,
    ctx: RequestContext,
    ref: PeriodReference,
) -> BillingPeriod | None:
    query = db.query(BillingPeriod).filter(BillingPeriod.user_id == ctx.user.id)
    if ref.billing_period_id is not None:
        query = query.filter(BillingPeriod.id == ref.billing_period_id)
    else:
        query = query.filter(BillingPeriod.date == ref.period_date)
    return query.order_by(BillingPeriod.id.desc()).first()


def _unknown_period(ref: PeriodReference) -> str:
    if ref.billing_period_id is not None:
        return f"unknown billing period {ref.billing_period_id}"
    return f"no billing period dated {ref.period_date}"


def _import_periods(
    db: Session,
    ctx: RequestContext,
    items: list[Any],
    result: CollectionReport,
) -> None:
    parsed = _parse(items, ImportBillingPeriod, result)
    for raw, data in sorted(parsed, key=lambda pair: pair[1].date):
        existing = (
            db.query(BillingPeriod)
            .filter(BillingPeriod.user_id == ctx.user.id, BillingPeriod.date == data.date)
            .first()
        )
        if existing is not None:
            result.skipped.append(
                ImportIssue(item=raw, reason=f"a billing period dated {data.date} already exists")
            )
            continue
        try:
            billing_service.add_billing_period(db, ctx, data)
        except PowertrackrError as exc:
            result.errors.append(ImportIssue(item=raw, reason=_describe(exc)))
            continue
        # Later periods, sub-meters and payments look this one up by query
        db.flush()
        result.added.append(data.model_dump(mode="json"))


def _import_sub_meters(
    db: Session,
    ctx: RequestContext,
    items: list[Any],
    result: CollectionReport,
) -> None:
    for raw, data in _parse(items, ImportSubMeterEntry, result):
        period = _find_period(db, ctx, data)
        if period is None:
            result.errors.append(ImportIssue(item=raw, reason=_unknown_period(data)))
            continue

        label = data.label.strip()
        if any(s.label.casefold() == label.casefold() for s in period.sub_meters):
            result.skipped.append(
                ImportIssue(
                    item=raw,
                    reason=f"sub-meter '{label}' already exists on billing period {period.id}",
                )
            )
            continue

        sub_meters = [
            SubMeterInput(label=s.label, reading=s.reading, previous_reading=s.previous_reading)
            for s in period.sub_meters
        ]
        sub_meters.append(
            SubMeterInput(
                label=data.label,
                reading=data.reading,
                previous_reading=data.previous_reading,
            )
        )
        try:
            billing_service.rebuild_billing_period(
                db, ctx, period, BillingPeriodUpdate(sub_meters=sub_meters)
            )
        except PowertrackrError as exc:
            result.errors.append(ImportIssue(item=raw, reason=_describe(exc)))
            continue
        db.flush()
        result.added.append(data.model_dump(mode="json"))


def _import_payments(
    db: Session,
    ctx: RequestContext,
    items: list[Any],
    result: CollectionReport,
) -> None:
    for raw, data in _parse(items, ImportPayment, result):
        period = _find_period(db, ctx, data)
        if period is None:
            result.errors.append(ImportIssue(item=raw, reason=_unknown_period(data)))
            continue
        try:
            add_payment(db, period, data)
        except SlotOccupied as exc:
            result.skipped.append(ImportIssue(item=raw, reason=exc.message))
            continue
        db.flush()
        result.added.append(data.model_dump(mode="json"))


def import_billing_data(db: Session, ctx: RequestContext, payload: Payload) -> ImportReport:
    """Import billing periods, sub-meter readings and payments for the current user.

    Raises:
        DependencyFailure: if the transaction cannot be committed; nothing is
            imported in that case.
    """
    payload = _as_mapping(payload)
    report = ImportReport()
    try:
        _import_periods(db, ctx, _collection(payload, PERIOD_KEYS), report.billing_periods)
        _import_sub_meters(db, ctx, _collection(payload, SUB_METER_KEYS), report.sub_meters)
        _import_payments(db, ctx, _collection(payload, PAYMENT_KEYS), report.payments)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Import for user %s rolled back", ctx.user.id)
        raise DependencyFailure("Could not import billing data") from exc

    logger.info(
        "Imported %d billing periods, %d sub-meters and %d payments for user %s",
        len(report.billing_periods.added),
        len(report.sub_meters.added),
        len(report.payments.added),
        ctx.user.id,
    )
    return report
