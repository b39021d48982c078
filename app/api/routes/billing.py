"""Billing period routes."""

from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from app.api.dependencies import require_context
from app.core.database import get_db
from app.models.billing_period import BillingPeriod
from app.schemas.billing import BillingPeriodCreate, BillingPeriodResponse, BillingPeriodUpdate
from app.schemas.imports import ImportReport, ImportSummary
from app.schemas.payment import PaymentCreate, PaymentResponse
from app.services import billing as billing_service
from app.services import importer
from app.services import reconciliation
from app.services.auth import RequestContext
from app.services.billing import MeterRegressionWarning

router = APIRouter(prefix="/billing", tags=["billing"])


def _to_response(
    period: BillingPeriod,
    warnings: list[MeterRegressionWarning] | None = None,
) -> BillingPeriodResponse:
    response = BillingPeriodResponse.model_validate(period)
    response.warnings = [str(w) for w in warnings or []]
    return response


@router.post("/", response_model=BillingPeriodResponse, status_code=status.HTTP_201_CREATED)
def create_billing_period(
    data: BillingPeriodCreate,
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> BillingPeriodResponse:
    """Record a billing period from main and sub-meter readings.

    Sub-meter readings going backwards are not an error: their consumption is
    counted as 0 and a warning is returned with the record.
    """
    period, warnings = billing_service.create_billing_period(db, ctx, data)
    return _to_response(period, warnings)


@router.get("/", response_model=list[BillingPeriodResponse])
def list_billing_periods(
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> list[BillingPeriodResponse]:
    """List the current user's billing history, newest first."""
    return [_to_response(p) for p in billing_service.list_billing_periods(db, ctx)]


@router.get("/{period_id}", response_model=BillingPeriodResponse)
def get_billing_period(
    period_id: int,
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> BillingPeriodResponse:
    """Get a billing period by ID."""
    return _to_response(billing_service.get_billing_period(db, ctx, period_id))


@router.patch("/{period_id}", response_model=BillingPeriodResponse)
def update_billing_period(
    period_id: int,
    data: BillingPeriodUpdate,
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> BillingPeriodResponse:
    """Update a billing period and recompute its figures."""
    period, warnings = billing_service.update_billing_period(db, ctx, period_id, data)
    return _to_response(period, warnings)


@router.delete("/{period_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_billing_period(
    period_id: int,
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> None:
    """Delete a billing period and its payments."""
    billing_service.delete_billing_period(db, ctx, period_id)


@router.post(
    "/{period_id}/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
def attach_payment(
    period_id: int,
    data: PaymentCreate,
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> PaymentResponse:
    """Attach a payment to the main or sub slot of a billing period.

    A slot holding a failed payment can be reused; any other payment in the
    slot is a conflict.
    """
    payment = reconciliation.attach_payment(db, ctx, period_id, data)
    return PaymentResponse.model_validate(payment)


@router.post("/import", response_model=ImportReport)
def import_billing_data(
    payload: dict[str, Any] | list[Any] = Body(...),
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> ImportReport:
    """Import billing periods, sub-meter readings and payments in bulk.

    Accepts an object with ``billing_periods``, ``sub_meters`` and
    ``payments`` arrays (camelCase keys work too) or a bare array of billing
    periods. Returns what was added, skipped and rejected per collection.
    """
    return importer.import_billing_data(db, ctx, payload)


@router.post("/import/summary", response_model=ImportSummary)
def summarize_import(
    payload: dict[str, Any] | list[Any] = Body(...),
    ctx: RequestContext = Depends(require_context),
) -> ImportSummary:
    """Count the items of an import payload without importing them."""
    return importer.summarize_import(payload)
