"""ComplianceEngine: the operation contracts the application layer calls.

Each call is an independent unit of work on a fresh session. Idempotent
operations (rescoring, bill refresh, sweep, reads) are retried on transient
store failures; the rest surface TransientStoreError to the caller.
"""

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from covenant.models.monthly_bill import MonthlyBill
from covenant.models.violation import Violation
from covenant.services import create_engine_from_settings, create_session_factory
from covenant.services.billing_service import BillingService, FinanceSummary
from covenant.services.clock import DEFAULT_CLOCK, Clock
from covenant.services.config import EngineSettings
from covenant.services.notification_service import (
    EmailTransport,
    NotificationResult,
    NotificationService,
)
from covenant.services.property_service import (
    PropertyOverview,
    PropertyService,
    TenantView,
    TimelineEntry,
)
from covenant.services.scheduler import PeriodicTask
from covenant.services.scoring_service import ScoreResult, ScoringService
from covenant.services.store import RetryConfig, StoreRunner
from covenant.services.suggestion import ViolationSuggestion
from covenant.services.violation_service import ViolationOutcome, ViolationService

logger = logging.getLogger(__name__)


class ComplianceEngine:
    """Scoring, fining and billing engine over an injected session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: EngineSettings,
        notifier: NotificationService | None = None,
        clock: Clock = DEFAULT_CLOCK,
        retry_config: RetryConfig | None = None,
    ):
        self.settings = settings
        self.notifier = notifier
        self.clock = clock
        self.runner = StoreRunner(session_factory, retry_config or RetryConfig.from_settings(settings))
        self._db_engine: AsyncEngine | None = None

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        transport: EmailTransport | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> "ComplianceEngine":
        """Build the engine, its database engine and notifier from settings."""
        db_engine = create_engine_from_settings(settings)
        notifier = NotificationService(transport, settings.from_email)
        engine = cls(create_session_factory(db_engine), settings, notifier=notifier, clock=clock)
        engine._db_engine = db_engine
        return engine

    async def dispose(self) -> None:
        """Close the database engine if this instance created it."""
        if self._db_engine is not None:
            await self._db_engine.dispose()
            self._db_engine = None

    # Violation lifecycle

    async def create_violation(
        self,
        property_id: int,
        category: str,
        severity: str,
        description: str,
        rule_cited: str | None = None,
        remediation: str | None = None,
        deadline_days: int = 14,
        image_url: str | None = None,
        send_notice: bool = False,
        actor: str | None = None,
    ) -> ViolationOutcome:
        return await self.runner.run(
            lambda session: self._violations(session).create_violation(
                property_id,
                category,
                severity,
                description,
                rule_cited=rule_cited,
                remediation=remediation,
                deadline_days=deadline_days,
                image_url=image_url,
                send_notice=send_notice,
                actor=actor,
            ),
            name="create_violation",
        )

    async def create_from_suggestion(
        self,
        property_id: int,
        suggestion: ViolationSuggestion,
        send_notice: bool = False,
        actor: str | None = None,
        **operator_edits: Any,
    ) -> ViolationOutcome:
        """Record a violation from an analyzer proposal plus operator edits."""
        draft = suggestion.to_draft(**operator_edits)
        return await self.runner.run(
            lambda session: self._violations(session).create_from_draft(
                property_id, draft, send_notice=send_notice, actor=actor
            ),
            name="create_violation",
        )

    async def flag_fixed(
        self,
        violation_id: int,
        property_id: int,
        evidence_ref: str | None = None,
        actor: str | None = None,
    ) -> Violation:
        return await self.runner.run(
            lambda session: self._violations(session).flag_fixed(
                violation_id, property_id, evidence_ref=evidence_ref, actor=actor
            ),
            name="flag_fixed",
        )

    async def confirm_resolved(self, violation_id: int, actor: str | None = None) -> Violation:
        return await self.runner.run(
            lambda session: self._violations(session).confirm_resolved(violation_id, actor=actor),
            name="confirm_resolved",
        )

    async def reject_fix(self, violation_id: int, actor: str | None = None) -> Violation:
        return await self.runner.run(
            lambda session: self._violations(session).reject_fix(violation_id, actor=actor),
            name="reject_fix",
        )

    async def update_violation(
        self, violation_id: int, actor: str | None = None, **changes: Any
    ) -> Violation:
        return await self.runner.run(
            lambda session: self._violations(session).update_violation(
                violation_id, actor=actor, **changes
            ),
            name="update_violation",
        )

    async def send_violation_notice(
        self, violation_id: int, actor: str | None = None
    ) -> NotificationResult:
        return await self.runner.run(
            lambda session: self._violations(session).send_violation_notice(violation_id, actor),
            name="send_violation_notice",
        )

    # Billing

    async def ensure_current_bill(self, property_id: int) -> MonthlyBill:
        return await self.runner.run(
            lambda session: self._billing(session).ensure_current_bill(property_id),
            retry=True,
            name="ensure_current_bill",
        )

    async def pay_bill(
        self, bill_id: int, property_id: int | None = None, actor: str | None = None
    ) -> MonthlyBill:
        return await self.runner.run(
            lambda session: self._billing(session).pay_bill(bill_id, property_id, actor),
            name="pay_bill",
        )

    async def overdue_sweep(self, should_stop: Callable[[], bool] | None = None) -> int:
        return await self.runner.run(
            lambda session: self._billing(session).overdue_sweep(should_stop),
            retry=True,
            name="overdue_sweep",
        )

    async def list_bills(self, property_id: int) -> list[MonthlyBill]:
        return await self.runner.run(
            lambda session: self._billing(session).list_bills(property_id),
            retry=True,
            name="list_bills",
        )

    async def finance_summary(self) -> FinanceSummary:
        return await self.runner.run(
            lambda session: self._billing(session).finance_summary(),
            retry=True,
            name="finance_summary",
        )

    def sweeper(self, interval_seconds: float | None = None) -> PeriodicTask:
        """Periodic overdue sweep; start() it, and await stop() at shutdown."""
        return PeriodicTask(
            self.overdue_sweep,
            interval_seconds or self.settings.sweep_interval_seconds,
            name="overdue-sweep",
        )

    # Scoring

    async def recalc_score(self, property_id: int) -> ScoreResult:
        return await self.runner.run(
            lambda session: ScoringService(session, self.clock).recalc(property_id),
            retry=True,
            name="recalc_score",
        )

    # Properties

    async def list_properties(self) -> list[PropertyOverview]:
        return await self.runner.run(
            lambda session: PropertyService(session).list_properties(),
            retry=True,
            name="list_properties",
        )

    async def get_property_by_owner_email(self, email: str) -> TenantView:
        return await self.runner.run(
            lambda session: PropertyService(session).get_by_owner_email(email),
            retry=True,
            name="get_property_by_owner_email",
        )

    async def violations_timeline(self) -> list[TimelineEntry]:
        return await self.runner.run(
            lambda session: PropertyService(session).violations_timeline(),
            retry=True,
            name="violations_timeline",
        )

    async def delete_property(self, property_id: int, actor: str | None = None) -> None:
        await self.runner.run(
            lambda session: PropertyService(session).delete_property(property_id, actor),
            name="delete_property",
        )

    def _billing(self, session: AsyncSession) -> BillingService:
        return BillingService(
            session,
            ScoringService(session, self.clock),
            self.notifier,
            self.clock,
            self.settings.base_rate_per_sqft,
        )

    def _violations(self, session: AsyncSession) -> ViolationService:
        billing = self._billing(session)
        return ViolationService(session, billing.scoring, billing, self.notifier, self.clock)


__all__ = ["ComplianceEngine"]
