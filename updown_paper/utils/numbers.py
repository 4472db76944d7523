"""Numeric coercion shared by the market data client and the engine."""

import math
from typing import Any, Optional


def to_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
