from __future__ import annotations

import math
from typing import Any

from domain.errors import ValidationError


def parse_amount(raw: Any) -> float:
    """Accept a positive finite number, from a number or a form string."""
    if raw is None or isinstance(raw, bool):
        raise ValidationError("Please enter a valid positive amount.")
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            raise ValidationError("Please enter a valid positive amount.")
    try:
        amount = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("Please enter a valid positive amount.") from None
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError("Please enter a valid positive amount.")
    return amount


def require_label(raw: Any, message: str) -> str:
    text = raw.strip() if isinstance(raw, str) else ""
    if not text:
        raise ValidationError(message)
    return text


def coerce_amount(raw: Any) -> float:
    """Read-side coalescing: anything that is not a finite number counts as zero."""
    if isinstance(raw, bool):
        return 0.0
    try:
        amount = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0
