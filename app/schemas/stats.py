"""Statistics schemas.

The live feed payload uses camelCase keys on the wire.
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EnergyUsed(CamelModel):
    total: float
    formatted: str
    energy_unit: str


class PaymentsAmount(CamelModel):
    total: float
    formatted: str


class StatsSnapshot(CamelModel):
    """Aggregate statistics across all users."""

    user_count: int
    energy_used: EnergyUsed
    billing_count: int
    payments_amount: PaymentsAmount


class ConsumptionSummary(BaseModel):
    """Consumption figures over a user's billing history."""

    total_kwh: Decimal
    average_daily_kwh: Decimal
    total_sub_meters: int
    latest_reading: Decimal


class BillingSummary(BaseModel):
    """Payment figures over a user's billing history."""

    current: Decimal
    invested: Decimal
    total_returns: Decimal
    net_returns: Decimal
    one_day_returns: Decimal
    average_daily_return: Decimal
    average_monthly_return: Decimal


class UserStatsResponse(BaseModel):
    consumption: ConsumptionSummary
    billing: BillingSummary
