"""Domain errors surfaced by the billing core.

Every error carries the HTTP status it maps to and a stable machine-readable
code; ``app.main`` renders them with a single exception handler.
"""

from dataclasses import asdict, dataclass
from decimal import Decimal


@dataclass(frozen=True)
class FieldError:
    """One offending input field."""

    field: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class DuplicateSubMeterLabel(FieldError):
    """A sub-meter label used more than once in the same submission."""

    code: str = "duplicate_sub_meter_label"
    message: str = "sub-meter label must be unique within a billing period"


class PowertrackrError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ReadingValidationError(PowertrackrError):
    """Meter readings failed validation; lists every offending field."""

    status_code = 422
    code = "validation_error"

    def __init__(self, errors: list[FieldError]) -> None:
        super().__init__(f"{len(errors)} invalid field(s)")
        self.errors = errors

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = [e.to_dict() for e in self.errors]
        return data


class BusinessRuleViolation(PowertrackrError):
    """A request is well-formed but breaks a billing rule."""

    code = "business_rule_violation"


class InvalidRate(BusinessRuleViolation):
    code = "invalid_rate"

    def __init__(self, rate: Decimal) -> None:
        super().__init__(f"Pay per kWh must be greater than 0, got {rate}")
        self.rate = rate


class InvalidPeriod(BusinessRuleViolation):
    code = "invalid_period"

    def __init__(self, total_kwh: Decimal, sub_kwh: Decimal) -> None:
        super().__init__(
            f"Sub-meter consumption ({sub_kwh} kWh) exceeds total consumption ({total_kwh} kWh)"
        )
        self.total_kwh = total_kwh
        self.sub_kwh = sub_kwh


class SlotOccupied(BusinessRuleViolation):
    status_code = 409
    code = "slot_occupied"

    def __init__(self, slot: str) -> None:
        super().__init__(f"The {slot} payment slot already holds an active payment")
        self.slot = slot


class DependencyFailure(PowertrackrError):
    """The data store (or another collaborator) failed; nothing was written."""

    status_code = 503
    code = "dependency_failure"
