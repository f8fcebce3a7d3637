"""Integration tests for monthly bills, payment and the overdue sweep."""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from covenant.engine import ComplianceEngine
from covenant.models import AuditLog, BillStatus, MonthlyBill, Property
from covenant.services import (
    create_all_tables,
    create_engine_from_settings,
    create_session_factory,
)
from covenant.services.config import EngineSettings
from covenant.services.errors import InvalidTransitionError, NotFoundError, UnauthorizedError
from covenant.services.scoring_service import ScoringService
from covenant.services.store import RetryConfig

pytestmark = pytest.mark.integration

AFTER_DUE_DATE = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)


async def scores(session_factory, property_id) -> tuple[int, int, int]:
    async with session_factory() as session:
        prop = await session.get(Property, property_id)
        return prop.compliance_score, prop.financial_score, prop.combined_score


BILL_COLUMNS = (
    "id",
    "property_id",
    "billing_month",
    "base_amount",
    "violation_fines",
    "total_amount",
    "due_date",
    "status",
    "paid_at",
    "reminder_sent_at",
    "created_at",
    "updated_at",
)


def bill_row(bill: MonthlyBill) -> dict:
    return {column: getattr(bill, column) for column in BILL_COLUMNS}


async def bill_count(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count(MonthlyBill.id)))


class TestEnsureCurrentBill:
    async def test_creates_bill_for_current_month(self, engine, make_property):
        property_id = await make_property(land_area_sqft="1250")

        bill = await engine.ensure_current_bill(property_id)

        assert bill.billing_month == date(2026, 10, 1)
        assert bill.due_date == date(2026, 10, 15)
        assert bill.base_amount == Decimal("62.50")
        assert bill.violation_fines == Decimal("0.00")
        assert bill.total_amount == Decimal("62.50")
        assert bill.status is BillStatus.PENDING

    async def test_idempotent(self, engine, make_property, session_factory, clock):
        property_id = await make_property()

        first = await engine.ensure_current_bill(property_id)
        clock.advance(hours=1)
        second = await engine.ensure_current_bill(property_id)

        assert bill_row(second) == bill_row(first)
        assert await bill_count(session_factory) == 1

    async def test_refresh_with_new_fine_touches_updated_at(self, engine, make_property, clock):
        property_id = await make_property()
        first = await engine.ensure_current_bill(property_id)
        clock.advance(hours=1)
        await engine.create_violation(property_id, "lawn", "medium", "Tall grass")

        second = await engine.ensure_current_bill(property_id)

        assert second.violation_fines == Decimal("100.00")
        assert second.updated_at > first.updated_at
        assert second.created_at == first.created_at

    async def test_unknown_property(self, engine):
        with pytest.raises(NotFoundError):
            await engine.ensure_current_bill(999)

    async def test_previous_month_violations_excluded(self, engine, make_property, clock):
        property_id = await make_property()
        await engine.create_violation(property_id, "lawn", "medium", "Tall grass")

        clock.set(datetime(2026, 11, 2, 9, 0, tzinfo=timezone.utc))
        november = await engine.ensure_current_bill(property_id)

        assert november.billing_month == date(2026, 11, 1)
        assert november.violation_fines == Decimal("0.00")
        bills = await engine.list_bills(property_id)
        assert [b.billing_month for b in bills] == [date(2026, 11, 1), date(2026, 10, 1)]
        assert bills[1].violation_fines == Decimal("100.00")

    async def test_overdue_bill_is_frozen(self, engine, make_property, clock):
        property_id = await make_property()
        await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)
        await engine.overdue_sweep()

        outcome = await engine.create_violation(property_id, "exterior", "high", "Broken fence")

        assert outcome.bill.status is BillStatus.OVERDUE
        assert outcome.bill.violation_fines == Decimal("0.00")
        assert outcome.bill.total_amount == Decimal("50.00")

    async def test_paid_bill_is_frozen(self, engine, make_property):
        property_id = await make_property()
        bill = await engine.ensure_current_bill(property_id)
        await engine.pay_bill(bill.id, property_id)

        outcome = await engine.create_violation(property_id, "lawn", "low", "Weeds")

        assert outcome.bill.id == bill.id
        assert outcome.bill.status is BillStatus.PAID
        assert outcome.bill.total_amount == Decimal("50.00")


class TestPayBill:
    async def test_pay_overdue_bill_restores_financial_score(
        self, engine, make_property, clock, session_factory
    ):
        property_id = await make_property()
        bill = await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)
        await engine.overdue_sweep()
        assert await scores(session_factory, property_id) == (100, 75, 90)

        paid = await engine.pay_bill(bill.id, property_id, actor="owner@example.com")

        assert paid.status is BillStatus.PAID
        assert paid.paid_at is not None
        assert await scores(session_factory, property_id) == (100, 100, 100)

    async def test_pay_rejections(self, engine, make_property):
        property_id = await make_property()
        other_id = await make_property(address="14 Maple Court", owner_email="other@example.com")
        bill = await engine.ensure_current_bill(property_id)

        with pytest.raises(NotFoundError):
            await engine.pay_bill(9999)
        with pytest.raises(UnauthorizedError):
            await engine.pay_bill(bill.id, other_id)

        await engine.pay_bill(bill.id)
        with pytest.raises(InvalidTransitionError, match="already paid"):
            await engine.pay_bill(bill.id)


class TestOverdueSweep:
    async def test_marks_overdue_and_reminds_once(
        self, engine, make_property, clock, transport, session_factory
    ):
        property_id = await make_property()
        await engine.create_violation(property_id, "lawn", "medium", "Tall grass")
        clock.set(AFTER_DUE_DATE)

        assert await engine.overdue_sweep() == 1
        assert await engine.overdue_sweep() == 0

        bills = await engine.list_bills(property_id)
        assert bills[0].status is BillStatus.OVERDUE
        assert bills[0].reminder_sent_at is not None
        assert len(transport.sent) == 1
        assert transport.sent[0]["subject"] == "Payment Overdue - 12 Maple Court"
        assert "Violation fines" in transport.sent[0]["html"]
        # Medium violation 15 days old: 100 - 10 * (1 - 15/180) -> 91; 0.6 * 91 + 0.4 * 75 -> 85
        assert await scores(session_factory, property_id) == (91, 75, 85)

    async def test_second_sweep_keeps_reminder_stamp(self, engine, make_property, clock, session_factory):
        property_id = await make_property()
        bill = await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)
        assert await engine.overdue_sweep() == 1
        async with session_factory() as session:
            stamped = bill_row(await session.get(MonthlyBill, bill.id))

        clock.advance(hours=1)
        assert await engine.overdue_sweep() == 0

        async with session_factory() as session:
            after = bill_row(await session.get(MonthlyBill, bill.id))
        assert after["reminder_sent_at"] == stamped["reminder_sent_at"]
        assert after == stamped

    async def test_failed_rescore_still_reminds_and_is_repaired(
        self, engine, make_property, clock, transport, session_factory, monkeypatch
    ):
        property_id = await make_property()
        await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)

        original = ScoringService.recalc
        failed = []

        async def recalc(self, property_id):
            if not failed:
                failed.append(property_id)
                raise RuntimeError("connection reset")
            return await original(self, property_id)

        monkeypatch.setattr(ScoringService, "recalc", recalc)

        assert await engine.overdue_sweep() == 1
        assert failed == [property_id]
        assert len(transport.sent) == 1
        assert await scores(session_factory, property_id) == (100, 75, 90)

        assert await engine.overdue_sweep() == 0
        assert len(transport.sent) == 1
        assert await scores(session_factory, property_id) == (100, 75, 90)

    async def test_sweep_repairs_stale_financial_score(self, engine, make_property, clock, session_factory):
        property_id = await make_property()
        await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)
        assert await engine.overdue_sweep() == 1
        async with session_factory() as session:
            await session.execute(
                update(Property)
                .where(Property.id == property_id)
                .values(financial_score=100, combined_score=100)
            )
            await session.commit()

        assert await engine.overdue_sweep() == 0

        assert await scores(session_factory, property_id) == (100, 75, 90)

    async def test_not_due_yet(self, engine, make_property, clock):
        property_id = await make_property()
        await engine.ensure_current_bill(property_id)
        clock.set(datetime(2026, 10, 15, 23, 0, tzinfo=timezone.utc))

        assert await engine.overdue_sweep() == 0

    async def test_paid_bills_skipped(self, engine, make_property, clock, transport):
        property_id = await make_property()
        bill = await engine.ensure_current_bill(property_id)
        await engine.pay_bill(bill.id)
        clock.set(AFTER_DUE_DATE)

        assert await engine.overdue_sweep() == 0
        assert transport.sent == []

    async def test_reminder_failure_recorded(
        self, engine, make_property, clock, transport, session_factory
    ):
        property_id = await make_property()
        bill = await engine.ensure_current_bill(property_id)
        transport.fail = ConnectionError("smtp down")
        clock.set(AFTER_DUE_DATE)

        assert await engine.overdue_sweep() == 1

        async with session_factory() as session:
            entry = (
                await session.execute(
                    select(AuditLog).where(
                        AuditLog.entity_id == bill.id, AuditLog.action == "reminder_failed"
                    )
                )
            ).scalar_one()
        assert entry.changes == {"recipient": "owner@example.com", "error": "smtp down"}
        # Not retried on the next tick
        transport.fail = None
        assert await engine.overdue_sweep() == 0
        assert transport.sent == []

    async def test_owner_without_email(self, engine, make_property, clock, transport):
        property_id = await make_property(owner_email=None)
        await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)

        assert await engine.overdue_sweep() == 1
        assert transport.sent == []

    async def test_one_failure_does_not_stop_the_sweep(
        self, engine, make_property, clock, transport, monkeypatch
    ):
        first = await make_property(address="1 Oak Lane", owner_email="a@example.com")
        second = await make_property(address="2 Oak Lane", owner_email="b@example.com")
        await engine.ensure_current_bill(first)
        await engine.ensure_current_bill(second)
        clock.set(AFTER_DUE_DATE)

        original = transport.send

        async def send(*, to, from_email, subject, html):
            if to == "a@example.com":
                raise RuntimeError("mailbox full")
            await original(to=to, from_email=from_email, subject=subject, html=html)

        monkeypatch.setattr(transport, "send", send)

        assert await engine.overdue_sweep() == 2
        assert [m["to"] for m in transport.sent] == ["b@example.com"]

    async def test_should_stop_ends_sweep_early(self, engine, make_property, clock):
        property_id = await make_property()
        await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)

        assert await engine.overdue_sweep(should_stop=lambda: True) == 0
        # Left for the next tick
        assert await engine.overdue_sweep() == 1


class TestFinanceSummary:
    async def test_summary(self, engine, make_property, clock):
        small = await make_property(address="1 Oak Lane", land_area_sqft="1000")
        large = await make_property(address="2 Oak Lane", land_area_sqft="2000")
        small_bill = await engine.ensure_current_bill(small)
        await engine.ensure_current_bill(large)
        await engine.pay_bill(small_bill.id)
        clock.set(AFTER_DUE_DATE)
        await engine.overdue_sweep()

        summary = await engine.finance_summary()

        assert summary.community_total_owed == Decimal("100.00")
        assert summary.overdue_count == 1
        assert [row.property_id for row in summary.properties] == [large]
        assert [row.property_id for row in summary.all_properties] == [large, small]
        assert summary.all_properties[0].combined_score == 90


class TestConcurrentWriters:
    @pytest.fixture
    async def file_engine(self, tmp_path, notifier, clock):
        """Engine over a file database so each session gets its own connection."""
        settings = EngineSettings(
            _env_file=None, database_url=f"sqlite+aiosqlite:///{tmp_path / 'bills.db'}"
        )
        db_engine = create_engine_from_settings(settings)
        await create_all_tables(db_engine)
        session_factory = create_session_factory(db_engine)
        engine = ComplianceEngine(
            session_factory,
            settings,
            notifier=notifier,
            clock=clock,
            retry_config=RetryConfig(max_attempts=5, base_delay=0.01, max_delay=0.1),
        )
        async with session_factory() as session:
            prop = Property(address="3 Oak Lane", owner_name="Sam", land_area_sqft=Decimal("1000"))
            session.add(prop)
            await session.commit()
        yield engine, session_factory, prop.id
        await db_engine.dispose()

    async def test_concurrent_refresh_yields_one_bill(self, file_engine):
        engine, session_factory, property_id = file_engine

        bills = await asyncio.gather(*(engine.ensure_current_bill(property_id) for _ in range(4)))

        assert len({bill.id for bill in bills}) == 1
        assert await bill_count(session_factory) == 1

    async def test_concurrent_rescores_agree(self, file_engine, clock):
        engine, session_factory, property_id = file_engine
        await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)
        assert await engine.overdue_sweep() == 1
        await engine.create_violation(property_id, "lawn", "high", "Dead hedge")

        results = await asyncio.gather(*(engine.recalc_score(property_id) for _ in range(4)))

        # Fresh high violation: 100 - 20 -> 80; 0.6 * 80 + 0.4 * 75 -> 78
        assert set(results) == {(80, 75, 78)}
        assert await scores(session_factory, property_id) == (80, 75, 78)

    async def test_recalc_unknown_property(self, file_engine):
        engine, _, _ = file_engine

        with pytest.raises(NotFoundError):
            await engine.recalc_score(999)


class TestSweeper:
    async def test_periodic_sweep_marks_overdue(self, engine, make_property, clock, transport):
        property_id = await make_property()
        await engine.ensure_current_bill(property_id)
        clock.set(AFTER_DUE_DATE)

        sweeper = engine.sweeper(interval_seconds=60)
        assert sweeper.interval_seconds == 60
        sweeper.start()
        for _ in range(200):
            if sweeper.ticks:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

        assert sweeper.ticks == 1
        assert len(transport.sent) == 1

    def test_default_interval_from_settings(self, engine, settings):
        assert engine.sweeper().interval_seconds == settings.sweep_interval_seconds
