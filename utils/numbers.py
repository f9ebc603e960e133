# utils/numbers.py
import math


def is_positive(value) -> bool:
    """False for None, NaN and +/-inf as well as anything <= 0."""
    return value is not None and math.isfinite(value) and value > 0


def is_non_negative(value) -> bool:
    return value is not None and math.isfinite(value) and value >= 0
