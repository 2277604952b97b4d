"""
Verdant Store - Shared Helpers
===============================
Pure utility functions with NO database or module dependencies.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional

CENT = Decimal("0.01")


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def money(value) -> Decimal:
    """Coerce a number/str to a 2-place Decimal. None → 0.00."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value) -> Optional[Decimal]:
    """Like money() but returns None for unparsable input."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return money(value)
    except (InvalidOperation, ValueError, TypeError):
        return None


def to_minor_units(amount) -> int:
    """Decimal rupees/dollars → integer paise/cents, as gateways expect."""
    return int((money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def safe_int(value: Optional[str]) -> Optional[int]:
    """Safely convert a string to int. Returns None on failure."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None

