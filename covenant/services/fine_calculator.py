"""Fine pricing for newly recorded violations.

Pure functions with no store access: a fine depends only on the violation's
severity and the property's combined score at the moment of creation.
"""

from decimal import ROUND_HALF_UP, Decimal

from covenant.models.violation import Severity

CENT = Decimal("0.01")

FINE_BASE: dict[Severity, Decimal] = {
    Severity.LOW: Decimal("50"),
    Severity.MEDIUM: Decimal("100"),
    Severity.HIGH: Decimal("200"),
}

# (minimum combined score, multiplier), checked top-down
FINE_MULTIPLIERS: tuple[tuple[int, Decimal], ...] = (
    (80, Decimal("1.0")),
    (60, Decimal("1.25")),
    (40, Decimal("1.5")),
)
LOWEST_TIER_MULTIPLIER = Decimal("2.0")


def fine_multiplier(combined_score: int | float) -> Decimal:
    """Multiplier applied to the base fine for a given combined score.

    >= 80 -> 1.0, 60-79 -> 1.25, 40-59 -> 1.5, below 40 -> 2.0
    """
    for threshold, multiplier in FINE_MULTIPLIERS:
        if combined_score >= threshold:
            return multiplier
    return LOWEST_TIER_MULTIPLIER


def calculate_fine(severity: Severity | str, combined_score: int | float) -> Decimal:
    """Compute the one-time fine for a new violation.

    Args:
        severity: Violation severity (enum or its string value)
        combined_score: Property's combined score when the violation is created

    Returns:
        Fine amount rounded to cents

    Raises:
        ValueError: If severity is not low/medium/high
    """
    base = FINE_BASE[Severity(severity)]
    return (base * fine_multiplier(combined_score)).quantize(CENT, rounding=ROUND_HALF_UP)


__all__ = ["FINE_BASE", "fine_multiplier", "calculate_fine"]
