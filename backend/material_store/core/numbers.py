import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up, so 2.5 -> 3 and -2.5 -> -2."""
    return int(math.floor(value + 0.5))
