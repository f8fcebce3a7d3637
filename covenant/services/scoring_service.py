"""Compliance, financial and combined score computation for properties.

Compliance Score: 100 - sum(severity_base * decay_weight) over open violations
- severity_base: high=20, medium=10, low=5
- decay_weight: max(0.3, 1 - age_days / 180), full weight on the day of creation

Financial Score: 100 - 25 * overdue_bill_count

Combined Score: round(0.6 * compliance + 0.4 * financial)

All scores are integers clamped to [0, 100]. Rounding is half-up.
"""

import logging
import math
from datetime import datetime
from typing import Iterable, NamedTuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.models.monthly_bill import BillStatus, MonthlyBill
from covenant.models.property import Property
from covenant.models.violation import Severity, Violation, ViolationStatus
from covenant.services.clock import DEFAULT_CLOCK, Clock, as_utc
from covenant.services.errors import NotFoundError

logger = logging.getLogger(__name__)

SEVERITY_DEDUCTION: dict[Severity, int] = {
    Severity.LOW: 5,
    Severity.MEDIUM: 10,
    Severity.HIGH: 20,
}
DECAY_WINDOW_DAYS = 180
MIN_DECAY_WEIGHT = 0.3
OVERDUE_BILL_PENALTY = 25
COMPLIANCE_WEIGHT = 0.6
FINANCIAL_WEIGHT = 0.4


class ScoreResult(NamedTuple):
    """Score triple persisted onto a property."""

    compliance_score: int
    financial_score: int
    combined_score: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: int) -> int:
    return max(0, min(100, value))


def decay_weight(age_days: float) -> float:
    """Weight of an open violation by age; never exceeds 1 or drops below 0.3."""
    return min(1.0, max(MIN_DECAY_WEIGHT, 1 - age_days / DECAY_WINDOW_DAYS))


def compute_compliance_score(
    open_violations: Iterable[tuple[Severity | str, datetime]], now: datetime
) -> int:
    """Compliance score from (severity, created_at) pairs of open violations."""
    now = as_utc(now)
    deductions = 0.0
    for severity, created_at in open_violations:
        age_days = (now - as_utc(created_at)).total_seconds() / 86400
        deductions += SEVERITY_DEDUCTION[Severity(severity)] * decay_weight(age_days)
    return clamp_score(round_half_up(100 - deductions))


def compute_financial_score(overdue_count: int) -> int:
    return clamp_score(100 - OVERDUE_BILL_PENALTY * overdue_count)


def compute_combined_score(compliance_score: int, financial_score: int) -> int:
    return clamp_score(
        round_half_up(COMPLIANCE_WEIGHT * compliance_score + FINANCIAL_WEIGHT * financial_score)
    )


class ScoringService:
    """Recomputes and persists a property's score triple.

    The recompute opens with a write to the property row, so concurrent
    recalculations for the same property are serialized: PostgreSQL holds the
    row lock and SQLite holds the database write lock until the commit. The
    reads that feed the triple therefore always see committed state.
    """

    def __init__(self, session: AsyncSession, clock: Clock = DEFAULT_CLOCK):
        self.session = session
        self.clock = clock

    async def recalc(self, property_id: int) -> ScoreResult:
        """Recompute and persist scores for a property.

        Args:
            property_id: Property to rescore

        Returns:
            ScoreResult with the persisted triple

        Raises:
            NotFoundError: If the property does not exist
        """
        now = self.clock.now()

        # Write first: a plain SELECT ... FOR UPDATE takes no lock on SQLite
        locked = await self.session.execute(
            update(Property)
            .where(Property.id == property_id)
            .values(updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if locked.rowcount == 0:
            await self.session.rollback()
            raise NotFoundError(f"Property {property_id} not found")

        open_rows = await self.session.execute(
            select(Violation.severity, Violation.created_at).where(
                Violation.property_id == property_id,
                Violation.status == ViolationStatus.OPEN,
            )
        )
        overdue_count = await self.session.scalar(
            select(func.count(MonthlyBill.id)).where(
                MonthlyBill.property_id == property_id,
                MonthlyBill.status == BillStatus.OVERDUE,
            )
        )

        compliance = compute_compliance_score(open_rows.all(), now)
        financial = compute_financial_score(int(overdue_count or 0))
        result = ScoreResult(
            compliance_score=compliance,
            financial_score=financial,
            combined_score=compute_combined_score(compliance, financial),
        )

        # Single statement so readers never see a partially updated triple
        await self.session.execute(
            update(Property)
            .where(Property.id == property_id)
            .values(
                compliance_score=result.compliance_score,
                financial_score=result.financial_score,
                combined_score=result.combined_score,
                updated_at=now,
            )
        )
        await self.session.commit()

        logger.info(
            "Rescored property %d: compliance=%d financial=%d combined=%d",
            property_id,
            result.compliance_score,
            result.financial_score,
            result.combined_score,
        )
        return result


__all__ = [
    "ScoreResult",
    "ScoringService",
    "compute_compliance_score",
    "compute_financial_score",
    "compute_combined_score",
    "decay_weight",
]
