"""Monthly billing: idempotent bill refresh, pay transition and overdue sweep.

Bill amounts:
- base_amount = land_area_sqft * base rate (0.05 per sqft)
- violation_fines = sum of fine_amount over OPEN violations created this month
- total_amount = base_amount + violation_fines, due on the 15th

A bill may only be refreshed while PENDING. The freeze check and the reminder
de-duplication are single conditional statements against the store, never a
read followed by a separate write.
"""

import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, NamedTuple

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.models.monthly_bill import BillStatus, MonthlyBill
from covenant.models.property import Property
from covenant.models.violation import Violation, ViolationStatus
from covenant.services.audit_service import AuditService
from covenant.services.clock import DEFAULT_CLOCK, Clock, as_utc
from covenant.services.errors import (
    InvalidTransitionError,
    InvariantViolationError,
    NotFoundError,
    UnauthorizedError,
)
from covenant.services.notification_service import NotificationService
from covenant.services.scoring_service import ScoringService, compute_financial_score

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
BASE_RATE_PER_SQFT = Decimal("0.05")
DUE_DAY = 15


class FinanceRow(NamedTuple):
    """Per-property finance overview row."""

    property_id: int
    address: str
    owner_name: str
    owner_email: str | None
    compliance_score: int
    combined_score: int
    total_owed: Decimal
    overdue_count: int


class FinanceSummary(NamedTuple):
    """Community-wide finance overview."""

    community_total_owed: Decimal
    overdue_count: int
    properties: list[FinanceRow]
    """Only properties that currently owe money"""

    all_properties: list[FinanceRow]


def billing_month_for(moment: datetime) -> date:
    """First day of the UTC calendar month containing moment."""
    return as_utc(moment).date().replace(day=1)


def next_billing_month(billing_month: date) -> date:
    if billing_month.month == 12:
        return date(billing_month.year + 1, 1, 1)
    return date(billing_month.year, billing_month.month + 1, 1)


def due_date_for(billing_month: date) -> date:
    return billing_month.replace(day=DUE_DAY)


def compute_base_amount(land_area_sqft: Decimal, rate: Decimal = BASE_RATE_PER_SQFT) -> Decimal:
    return (Decimal(str(land_area_sqft)) * rate).quantize(CENT, rounding=ROUND_HALF_UP)


def _to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def _month_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


class BillingService:
    """Async service for monthly bill operations.

    Encapsulates MonthlyBill creation/refresh, the pay transition and the
    periodic overdue sweep. Every change in overdue/paid counts is followed by
    a synchronous rescore of the owning property.
    """

    def __init__(
        self,
        session: AsyncSession,
        scoring: ScoringService | None = None,
        notifier: NotificationService | None = None,
        clock: Clock = DEFAULT_CLOCK,
        base_rate: Decimal = BASE_RATE_PER_SQFT,
    ):
        self.session = session
        self.clock = clock
        self.scoring = scoring or ScoringService(session, clock)
        self.notifier = notifier
        self.base_rate = base_rate

    async def ensure_current_bill(self, property_id: int) -> MonthlyBill:
        """Create or refresh this calendar month's bill for a property.

        Idempotent: repeated calls with no intervening violation changes leave
        the bill unchanged. Frozen (overdue/paid) bills are never modified.

        Args:
            property_id: Property to bill

        Returns:
            The bill row as stored after the upsert

        Raises:
            NotFoundError: If the property does not exist
            InvariantViolationError: If a frozen bill's amounts changed
        """
        now = self.clock.now()
        billing_month = billing_month_for(now)

        land_area = await self.session.scalar(
            select(Property.land_area_sqft).where(Property.id == property_id)
        )
        if land_area is None:
            raise NotFoundError(f"Property {property_id} not found")

        base_amount = compute_base_amount(land_area, self.base_rate)
        violation_fines = await self._current_month_fines(property_id, billing_month)
        total_amount = (base_amount + violation_fines).quantize(CENT, rounding=ROUND_HALF_UP)

        before = await self._get_bill_for_month(property_id, billing_month)
        frozen_amounts = None
        if before is not None and before.status != BillStatus.PENDING:
            frozen_amounts = (before.violation_fines, before.total_amount)

        values = {
            "property_id": property_id,
            "billing_month": billing_month,
            "base_amount": base_amount,
            "violation_fines": violation_fines,
            "total_amount": total_amount,
            "due_date": due_date_for(billing_month),
            "status": BillStatus.PENDING,
            "created_at": now,
            "updated_at": now,
        }
        await self._upsert_pending_bill(values)
        await self.session.commit()

        bill = await self._get_bill_for_month(property_id, billing_month)
        if bill is None:
            raise InvariantViolationError(
                f"Bill for property {property_id} month {billing_month} missing after upsert"
            )
        if frozen_amounts is not None and frozen_amounts != (bill.violation_fines, bill.total_amount):
            raise InvariantViolationError(f"Frozen bill {bill.id} amounts changed")

        logger.debug(
            "Current bill for property %d (%s): base=%s fines=%s total=%s status=%s",
            property_id,
            billing_month,
            bill.base_amount,
            bill.violation_fines,
            bill.total_amount,
            bill.status.value,
        )
        return bill

    async def pay_bill(
        self, bill_id: int, property_id: int | None = None, actor: str | None = None
    ) -> MonthlyBill:
        """Mark a bill paid and rescore its property.

        Args:
            bill_id: Bill to pay
            property_id: When given, the bill must belong to this property
            actor: Identity recorded in the audit log

        Raises:
            NotFoundError: Bill does not exist
            UnauthorizedError: Bill belongs to another property
            InvalidTransitionError: Bill is already paid
        """
        now = self.clock.now()
        conditions = [MonthlyBill.id == bill_id, MonthlyBill.status != BillStatus.PAID]
        if property_id is not None:
            conditions.append(MonthlyBill.property_id == property_id)

        result = await self.session.execute(
            update(MonthlyBill)
            .where(*conditions)
            .values(status=BillStatus.PAID, paid_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            existing = await self._get_bill(bill_id)
            if existing is None:
                raise NotFoundError(f"Bill {bill_id} not found")
            if property_id is not None and existing.property_id != property_id:
                raise UnauthorizedError(f"Bill {bill_id} does not belong to property {property_id}")
            raise InvalidTransitionError(f"Bill {bill_id} is already paid")

        AuditService.log(self.session, "bill", bill_id, "pay", actor, {"status": "paid"})
        await self.session.commit()

        bill = await self._get_bill(bill_id)
        logger.info("Bill %d paid (property %d)", bill_id, bill.property_id)
        await self.scoring.recalc(bill.property_id)
        return bill

    async def overdue_sweep(self, should_stop: Callable[[], bool] | None = None) -> int:
        """Move past-due pending bills to OVERDUE and remind their owners.

        Each bill is handled on its own: status change and reminder stamp in one
        conditional statement, then a rescore, then the reminder attempt. A
        failure on one bill is logged and the sweep moves on. A failed rescore
        does not block the reminder; the sweep ends by rescoring every property
        whose stored financial score disagrees with its overdue bill count.

        Args:
            should_stop: Checked between bills; returning True ends the sweep early

        Returns:
            Number of bills moved to OVERDUE by this sweep
        """
        today = as_utc(self.clock.now()).date()
        candidate_ids = (
            (
                await self.session.execute(
                    select(MonthlyBill.id)
                    .where(
                        MonthlyBill.status == BillStatus.PENDING,
                        MonthlyBill.due_date < today,
                        MonthlyBill.reminder_sent_at.is_(None),
                    )
                    .order_by(MonthlyBill.due_date, MonthlyBill.id)
                )
            )
            .scalars()
            .all()
        )
        await self.session.commit()

        processed = 0
        for bill_id in candidate_ids:
            if should_stop is not None and should_stop():
                logger.info(
                    "Overdue sweep stopping early; %d of %d bills left for next tick",
                    len(candidate_ids) - processed,
                    len(candidate_ids),
                )
                break
            try:
                if await self._mark_overdue_and_remind(bill_id):
                    processed += 1
            except Exception:
                logger.error("Overdue sweep failed for bill %d", bill_id, exc_info=True)
                await self.session.rollback()

        if candidate_ids:
            logger.info("Overdue sweep processed %d of %d bills", processed, len(candidate_ids))
        if should_stop is None or not should_stop():
            await self._rescore_stale_properties()
        return processed

    async def list_bills(self, property_id: int) -> list[MonthlyBill]:
        """All bills for a property, newest month first, current month refreshed."""
        await self.ensure_current_bill(property_id)
        result = await self.session.execute(
            select(MonthlyBill)
            .where(MonthlyBill.property_id == property_id)
            .order_by(MonthlyBill.billing_month.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def finance_summary(self) -> FinanceSummary:
        """Community finance overview, refreshing every property's current bill first."""
        property_ids = (await self.session.execute(select(Property.id))).scalars().all()
        for property_id in property_ids:
            await self.ensure_current_bill(property_id)

        total_owed = func.coalesce(
            func.sum(
                case(
                    (MonthlyBill.status != BillStatus.PAID, MonthlyBill.total_amount),
                    else_=0,
                )
            ),
            0,
        ).label("total_owed")
        overdue_count = func.count(
            case((MonthlyBill.status == BillStatus.OVERDUE, MonthlyBill.id))
        ).label("overdue_count")

        result = await self.session.execute(
            select(Property, total_owed, overdue_count)
            .outerjoin(MonthlyBill, MonthlyBill.property_id == Property.id)
            .group_by(Property.id)
            .execution_options(populate_existing=True)
        )
        rows = [
            FinanceRow(
                property_id=prop.id,
                address=prop.address,
                owner_name=prop.owner_name,
                owner_email=prop.owner_email,
                compliance_score=prop.compliance_score,
                combined_score=prop.combined_score,
                total_owed=_to_money(owed),
                overdue_count=int(overdue or 0),
            )
            for prop, owed, overdue in result.all()
        ]
        rows.sort(key=lambda row: row.total_owed, reverse=True)

        return FinanceSummary(
            community_total_owed=sum((row.total_owed for row in rows), Decimal("0.00")),
            overdue_count=sum(row.overdue_count for row in rows),
            properties=[row for row in rows if row.total_owed > 0],
            all_properties=rows,
        )

    async def _mark_overdue_and_remind(self, bill_id: int) -> bool:
        now = self.clock.now()

        # Status change and reminder stamp together; the stamp is the dedup guard
        result = await self.session.execute(
            update(MonthlyBill)
            .where(
                MonthlyBill.id == bill_id,
                MonthlyBill.status == BillStatus.PENDING,
                MonthlyBill.reminder_sent_at.is_(None),
            )
            .values(status=BillStatus.OVERDUE, reminder_sent_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            logger.debug("Bill %d already handled by another sweep or paid", bill_id)
            return False

        AuditService.log(self.session, "bill", bill_id, "overdue", None, {"status": "overdue"})
        await self.session.commit()

        bill = await self._get_bill(bill_id)
        logger.info("Bill %d for property %d is overdue", bill_id, bill.property_id)
        try:
            await self.scoring.recalc(bill.property_id)
        except Exception:
            # The bill is already stamped; _rescore_stale_properties picks this up
            logger.error(
                "Rescore of property %d after bill %d went overdue failed",
                bill.property_id,
                bill_id,
                exc_info=True,
            )
            await self.session.rollback()

        if self.notifier is not None:
            property = await self.session.get(Property, bill.property_id, populate_existing=True)
            outcome = await self.notifier.send_overdue_reminder(property, bill)
            if not outcome.sent:
                logger.warning(
                    "Overdue reminder for bill %d to %s failed: %s",
                    bill_id,
                    property.owner_email,
                    outcome.error,
                )
                AuditService.log(
                    self.session,
                    "bill",
                    bill_id,
                    "reminder_failed",
                    None,
                    {"recipient": property.owner_email, "error": outcome.error},
                )
                await self.session.commit()
        return True

    async def _rescore_stale_properties(self) -> int:
        overdue_count = func.count(case((MonthlyBill.status == BillStatus.OVERDUE, MonthlyBill.id)))
        result = await self.session.execute(
            select(Property.id, Property.financial_score, overdue_count)
            .outerjoin(MonthlyBill, MonthlyBill.property_id == Property.id)
            .group_by(Property.id, Property.financial_score)
            .order_by(Property.id)
        )
        stale_ids = [
            property_id
            for property_id, financial_score, overdue in result.all()
            if financial_score != compute_financial_score(int(overdue or 0))
        ]
        await self.session.commit()

        rescored = 0
        for property_id in stale_ids:
            try:
                await self.scoring.recalc(property_id)
                rescored += 1
            except Exception:
                logger.error("Reconciling scores of property %d failed", property_id, exc_info=True)
                await self.session.rollback()
        if stale_ids:
            logger.warning(
                "Rescored %d of %d properties with stale financial scores", rescored, len(stale_ids)
            )
        return rescored

    async def _current_month_fines(self, property_id: int, billing_month: date) -> Decimal:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(Violation.fine_amount), 0)).where(
                Violation.property_id == property_id,
                Violation.status == ViolationStatus.OPEN,
                Violation.created_at >= _month_start(billing_month),
                Violation.created_at < _month_start(next_billing_month(billing_month)),
            )
        )
        return _to_money(total)

    async def _upsert_pending_bill(self, values: dict) -> None:
        dialect_name = self.session.get_bind().dialect.name
        if dialect_name in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect_name == "postgresql" else sqlite.insert
            stmt = insert(MonthlyBill).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["property_id", "billing_month"],
                set_={
                    "base_amount": stmt.excluded.base_amount,
                    "violation_fines": stmt.excluded.violation_fines,
                    "total_amount": stmt.excluded.total_amount,
                    "updated_at": stmt.excluded.updated_at,
                },
                where=and_(
                    MonthlyBill.status == BillStatus.PENDING,
                    or_(
                        MonthlyBill.base_amount != stmt.excluded.base_amount,
                        MonthlyBill.violation_fines != stmt.excluded.violation_fines,
                        MonthlyBill.total_amount != stmt.excluded.total_amount,
                    ),
                ),
            )
            await self.session.execute(stmt)
            return

        # Other dialects: conditional update, then insert; a unique conflict
        # means the row exists and is frozen or already current.
        result = await self.session.execute(
            update(MonthlyBill)
            .where(
                MonthlyBill.property_id == values["property_id"],
                MonthlyBill.billing_month == values["billing_month"],
                MonthlyBill.status == BillStatus.PENDING,
                or_(
                    MonthlyBill.base_amount != values["base_amount"],
                    MonthlyBill.violation_fines != values["violation_fines"],
                    MonthlyBill.total_amount != values["total_amount"],
                ),
            )
            .values(
                base_amount=values["base_amount"],
                violation_fines=values["violation_fines"],
                total_amount=values["total_amount"],
                updated_at=values["updated_at"],
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return
        try:
            async with self.session.begin_nested():
                self.session.add(MonthlyBill(**values))
        except IntegrityError:
            logger.debug(
                "Bill for property %d month %s is frozen or already current",
                values["property_id"],
                values["billing_month"],
            )

    async def _get_bill(self, bill_id: int) -> MonthlyBill | None:
        return await self.session.get(MonthlyBill, bill_id, populate_existing=True)

    async def _get_bill_for_month(self, property_id: int, billing_month: date) -> MonthlyBill | None:
        result = await self.session.execute(
            select(MonthlyBill)
            .where(
                MonthlyBill.property_id == property_id,
                MonthlyBill.billing_month == billing_month,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


__all__ = [
    "BASE_RATE_PER_SQFT",
    "BillingService",
    "FinanceRow",
    "FinanceSummary",
    "billing_month_for",
    "compute_base_amount",
    "due_date_for",
    "next_billing_month",
]
