from __future__ import annotations

import math

MIN_SCORE = 0.0
MAX_SCORE = 10.0


def parse_score(value: object) -> float | None:
    """Coerce a model-provided score into a float, or None when it is not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        parsed = float(value)
    elif isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def normalize_score(value: float) -> float:
    bounded = max(MIN_SCORE, min(MAX_SCORE, value))
    return round(bounded, 1)
