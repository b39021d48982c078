"""Human-readable formatting of energy and money amounts."""

from decimal import Decimal

from app.core.config import settings

ENERGY_UNITS = {
    "kWh": Decimal("1"),
    "MWh": Decimal("1e3"),
    "GWh": Decimal("1e6"),
    "TWh": Decimal("1e9"),
}


def convert_energy(kwh: Decimal | float, to_unit: str) -> Decimal:
    """Convert a kWh value to ``to_unit``."""
    try:
        factor = ENERGY_UNITS[to_unit]
    except KeyError:
        raise ValueError(f"Unknown energy unit: {to_unit}") from None
    return Decimal(str(kwh)) / factor


def get_energy_unit(kwh: Decimal | float) -> str:
    """Return the largest unit in which ``kwh`` is at least 1."""
    magnitude = abs(Decimal(str(kwh)))
    for unit in ("TWh", "GWh", "MWh"):
        if magnitude >= ENERGY_UNITS[unit]:
            return unit
    return "kWh"


def _trim(value: Decimal) -> str:
    text = f"{value:,.2f}"
    return text.rstrip("0").rstrip(".")


def format_energy(kwh: Decimal | float) -> str:
    """Format an energy amount with a scaled unit, e.g. ``1.2 MWh``."""
    unit = get_energy_unit(kwh)
    return f"{_trim(convert_energy(kwh, unit))} {unit}"


def format_currency(amount: Decimal | float, symbol: str | None = None) -> str:
    """Format a money amount, e.g. ``₱1,234.50``."""
    if symbol is None:
        symbol = settings.CURRENCY_SYMBOL
    value = Decimal(str(amount))
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"
