"""Payment routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.dependencies import require_context
from app.core.database import get_db
from app.schemas.payment import PaymentResponse, PaymentUpdate
from app.services import reconciliation
from app.services.auth import RequestContext

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/", response_model=list[PaymentResponse])
def list_payments(
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> list[PaymentResponse]:
    """List the current user's payments."""
    return [PaymentResponse.model_validate(p) for p in reconciliation.list_payments(db, ctx)]


@router.get("/{payment_id}", response_model=PaymentResponse)
def get_payment(
    payment_id: int,
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> PaymentResponse:
    """Get a payment by ID."""
    return PaymentResponse.model_validate(reconciliation.get_payment(db, ctx, payment_id))


@router.patch("/{payment_id}", response_model=PaymentResponse)
def update_payment(
    payment_id: int,
    data: PaymentUpdate,
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> PaymentResponse:
    """Update a payment; the billing period's status follows."""
    payment = reconciliation.update_payment(db, ctx, payment_id, data)
    return PaymentResponse.model_validate(payment)
