"""Enum definitions for billing and payment state."""

from enum import Enum


class PeriodStatus(str, Enum):
    """Reconciliation status of a billing period."""

    PENDING = "pending"
    PAID = "paid"
    NOT_APPLICABLE = "n/a"  # No payment obligation at all


class PaymentStatus(str, Enum):
    """Lifecycle of a single payment."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentSlot(str, Enum):
    """Which obligation of a billing period a payment settles."""

    MAIN = "main"  # Household share: balance
    SUB = "sub"  # Sub-tenant share: sub_kwh * pay_per_kwh
