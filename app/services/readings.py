"""Meter reading normalizer.

Validates the main reading and the sub-meter readings of one submission and
turns them into a ``NormalizedReadings`` value for the billing record builder.
Validation is not fail-fast: every offending field is collected and reported
in a single ``ReadingValidationError``.
"""

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from app.core.config import settings
from app.core.exceptions import DuplicateSubMeterLabel, FieldError, ReadingValidationError
from app.models.billing_period import KWH_SCALE
from app.schemas.billing import SubMeterInput


@dataclass(frozen=True)
class SubMeterReading:
    """A validated sub-meter reading."""

    label: str
    reading: Decimal
    previous_reading: Decimal | None = None


@dataclass(frozen=True)
class NormalizedReadings:
    """Readings for one billing period, ready for the builder."""

    total_kwh: Decimal
    sub_meters: list[SubMeterReading] = field(default_factory=list)


def quantize_kwh(value: Decimal) -> Decimal:
    """Round an energy reading to the stored number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-KWH_SCALE), rounding=ROUND_HALF_UP)


def _label_key(label: str) -> str:
    return label.strip().casefold()


def _check_total(total_kwh: Decimal | None, min_total_kwh: Decimal) -> list[FieldError]:
    if total_kwh is None:
        return [FieldError("total_kwh", "required", "is required")]
    if total_kwh < min_total_kwh:
        return [
            FieldError("total_kwh", "min_value", f"must be at least {min_total_kwh}"),
        ]
    return []


def _check_sub_meter(index: int, entry: SubMeterInput) -> list[FieldError]:
    prefix = f"sub_meters.{index}"
    errors: list[FieldError] = []
    if not entry.label.strip():
        errors.append(FieldError(f"{prefix}.label", "required", "is required"))
    if entry.reading < 0:
        errors.append(FieldError(f"{prefix}.reading", "min_value", "must be 0 or greater"))
    if entry.previous_reading is not None and entry.previous_reading < 0:
        errors.append(
            FieldError(f"{prefix}.previous_reading", "min_value", "must be 0 or greater")
        )
    return errors


def _check_duplicate_labels(sub_meters: Sequence[SubMeterInput]) -> list[FieldError]:
    # Every occurrence of a repeated label is flagged, so the outcome does
    # not depend on submission order.
    counts = Counter(_label_key(s.label) for s in sub_meters if s.label.strip())
    return [
        DuplicateSubMeterLabel(field=f"sub_meters.{i}.label")
        for i, s in enumerate(sub_meters)
        if s.label.strip() and counts[_label_key(s.label)] > 1
    ]


def normalize_readings(
    total_kwh: Decimal | None,
    sub_meters: Sequence[SubMeterInput],
    min_total_kwh: Decimal | None = None,
) -> NormalizedReadings:
    """Validate a submission and return its normalized readings.

    Readings are rounded to the stored number of decimal places.

    Raises:
        ReadingValidationError: listing every invalid field.
    """
    if min_total_kwh is None:
        min_total_kwh = settings.MIN_MAIN_READING

    errors = _check_total(total_kwh, min_total_kwh)
    for index, entry in enumerate(sub_meters):
        errors.extend(_check_sub_meter(index, entry))
    errors.extend(_check_duplicate_labels(sub_meters))

    if errors:
        raise ReadingValidationError(errors)

    return NormalizedReadings(
        total_kwh=quantize_kwh(total_kwh),
        sub_meters=[
            SubMeterReading(
                label=entry.label.strip(),
                reading=quantize_kwh(entry.reading),
                previous_reading=(
                    quantize_kwh(entry.previous_reading)
                    if entry.previous_reading is not None
                    else None
                ),
            )
            for entry in sub_meters
        ],
    )
