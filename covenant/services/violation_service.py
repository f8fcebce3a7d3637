"""Violation lifecycle: creation, status transitions and in-place edits.

Transitions:
- create            -> OPEN (fine priced from the property's combined score)
- flag_fixed        OPEN -> PENDING_REVIEW (owner-initiated, may attach evidence)
- confirm_resolved  OPEN | PENDING_REVIEW -> RESOLVED
- reject_fix        PENDING_REVIEW -> OPEN

Every transition is one conditional UPDATE guarded on the current status. After
any change that can move a violation in or out of the open set, the property is
rescored and its current bill refreshed before the call returns.
"""

import logging
from typing import Any, NamedTuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.models.monthly_bill import MonthlyBill
from covenant.models.property import Property
from covenant.models.violation import Violation, ViolationStatus
from covenant.services.audit_service import AuditService
from covenant.services.billing_service import BillingService
from covenant.services.clock import DEFAULT_CLOCK, Clock
from covenant.services.errors import InvalidTransitionError, NotFoundError, UnauthorizedError
from covenant.services.fine_calculator import calculate_fine
from covenant.services.notification_service import NotificationResult, NotificationService
from covenant.services.scoring_service import ScoringService
from covenant.services.suggestion import ViolationDraft, ViolationEdit

logger = logging.getLogger(__name__)


class ViolationOutcome(NamedTuple):
    """Result of creating a violation."""

    violation: Violation
    bill: MonthlyBill
    notice: NotificationResult | None = None
    """Advisory delivery outcome when a notice was requested"""


class ViolationService:
    """Service for violation lifecycle operations."""

    def __init__(
        self,
        session: AsyncSession,
        scoring: ScoringService | None = None,
        billing: BillingService | None = None,
        notifier: NotificationService | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ):
        self.session = session
        self.clock = clock
        self.notifier = notifier
        self.scoring = scoring or ScoringService(session, clock)
        self.billing = billing or BillingService(session, self.scoring, notifier, clock)

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
        """Record a new open violation against a property.

        Raises:
            ValueError: If category, severity or description are invalid
            NotFoundError: If the property does not exist
        """
        draft = ViolationDraft(
            category=category,
            severity=severity,
            description=description,
            rule_cited=rule_cited,
            remediation=remediation,
            deadline_days=deadline_days,
            image_url=image_url,
        )
        return await self.create_from_draft(property_id, draft, send_notice=send_notice, actor=actor)

    async def create_from_draft(
        self,
        property_id: int,
        draft: ViolationDraft,
        send_notice: bool = False,
        actor: str | None = None,
    ) -> ViolationOutcome:
        """Record a violation from operator-confirmed values.

        The fine is priced once, here, from the combined score persisted on the
        property at this instant.
        """
        combined_score = await self.session.scalar(
            select(Property.combined_score).where(Property.id == property_id)
        )
        if combined_score is None:
            raise NotFoundError(f"Property {property_id} not found")

        now = self.clock.now()
        fine_amount = calculate_fine(draft.severity, combined_score)
        violation = Violation(
            property_id=property_id,
            category=draft.category,
            severity=draft.severity,
            description=draft.description,
            rule_cited=draft.rule_cited,
            remediation=draft.remediation,
            deadline_days=draft.deadline_days,
            image_url=draft.image_url,
            status=ViolationStatus.OPEN,
            fine_amount=fine_amount,
            created_at=now,
            updated_at=now,
        )
        self.session.add(violation)
        await self.session.flush()
        AuditService.log(
            self.session,
            "violation",
            violation.id,
            "create",
            actor,
            {
                "severity": draft.severity.value,
                "category": draft.category.value,
                "fine_amount": str(fine_amount),
                "combined_score": combined_score,
            },
        )
        await self.session.commit()
        logger.info(
            "Violation %d recorded for property %d: %s/%s fine=%s (combined score %d)",
            violation.id,
            property_id,
            draft.category.value,
            draft.severity.value,
            fine_amount,
            combined_score,
        )

        bill = await self._refresh_property(property_id)
        violation = await self._get_violation(violation.id)

        notice = None
        if send_notice:
            notice = await self._deliver_notice(violation, bill, actor)
        return ViolationOutcome(violation=violation, bill=bill, notice=notice)

    async def flag_fixed(
        self,
        violation_id: int,
        property_id: int,
        evidence_ref: str | None = None,
        actor: str | None = None,
    ) -> Violation:
        """Owner reports an open violation as fixed.

        Raises:
            NotFoundError: Violation does not exist
            UnauthorizedError: Violation belongs to another property
            InvalidTransitionError: Violation is not open (already actioned)
        """
        values: dict[str, Any] = {"status": ViolationStatus.PENDING_REVIEW}
        if evidence_ref is not None:
            values["evidence_ref"] = evidence_ref

        changed = await self._transition(
            violation_id,
            allowed_from=(ViolationStatus.OPEN,),
            values=values,
            property_id=property_id,
        )
        if not changed:
            await self._reject(violation_id, "already actioned", property_id=property_id)

        return await self._finish_transition(violation_id, "flag_fixed", actor, evidence_ref)

    async def confirm_resolved(self, violation_id: int, actor: str | None = None) -> Violation:
        """Admin confirms a violation is resolved.

        Raises:
            NotFoundError: Violation does not exist
            InvalidTransitionError: Violation is already resolved
        """
        changed = await self._transition(
            violation_id,
            allowed_from=(ViolationStatus.OPEN, ViolationStatus.PENDING_REVIEW),
            values={"status": ViolationStatus.RESOLVED, "resolved_at": self.clock.now()},
        )
        if not changed:
            await self._reject(violation_id, "already resolved")

        return await self._finish_transition(violation_id, "resolve", actor)

    async def reject_fix(self, violation_id: int, actor: str | None = None) -> Violation:
        """Admin rejects a reported fix, reopening the violation.

        Raises:
            NotFoundError: Violation does not exist
            InvalidTransitionError: Violation is not pending review
        """
        changed = await self._transition(
            violation_id,
            allowed_from=(ViolationStatus.PENDING_REVIEW,),
            values={"status": ViolationStatus.OPEN},
        )
        if not changed:
            await self._reject(violation_id, "not pending review")

        return await self._finish_transition(violation_id, "reopen", actor)

    async def update_violation(
        self, violation_id: int, actor: str | None = None, **changes: Any
    ) -> Violation:
        """Correct category/severity/description/rule/remediation/deadline in place.

        Status and fine_amount are never touched; the property is rescored since
        severity drives the compliance deduction.

        Raises:
            ValueError: Unknown field or invalid value
            NotFoundError: Violation does not exist
        """
        edit = ViolationEdit(**changes)
        values = edit.model_dump(exclude_unset=True)

        violation = await self._get_violation(violation_id)
        if violation is None:
            raise NotFoundError(f"Violation {violation_id} not found")
        if not values:
            return violation

        values["updated_at"] = self.clock.now()
        await self.session.execute(
            update(Violation)
            .where(Violation.id == violation_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        AuditService.log(
            self.session,
            "violation",
            violation_id,
            "edit",
            actor,
            {key: getattr(value, "value", value) for key, value in values.items() if key != "updated_at"},
        )
        await self.session.commit()
        logger.info("Violation %d edited: %s", violation_id, sorted(values))

        await self._refresh_property(violation.property_id)
        return await self._get_violation(violation_id)

    async def send_violation_notice(
        self, violation_id: int, actor: str | None = None
    ) -> NotificationResult:
        """Send (or resend) the compliance notice for an existing violation."""
        violation = await self._get_violation(violation_id)
        if violation is None:
            raise NotFoundError(f"Violation {violation_id} not found")
        bill = await self.billing.ensure_current_bill(violation.property_id)
        return await self._deliver_notice(violation, bill, actor)

    async def get_violation(self, violation_id: int) -> Violation:
        violation = await self._get_violation(violation_id)
        if violation is None:
            raise NotFoundError(f"Violation {violation_id} not found")
        return violation

    async def _transition(
        self,
        violation_id: int,
        allowed_from: tuple[ViolationStatus, ...],
        values: dict[str, Any],
        property_id: int | None = None,
    ) -> bool:
        conditions = [Violation.id == violation_id, Violation.status.in_(allowed_from)]
        if property_id is not None:
            conditions.append(Violation.property_id == property_id)

        result = await self.session.execute(
            update(Violation)
            .where(*conditions)
            .values(**values, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            return False
        return True

    async def _reject(self, violation_id: int, wrong_state: str, property_id: int | None = None) -> None:
        """Classify why a guarded transition matched no row, and raise."""
        violation = await self._get_violation(violation_id)
        if violation is None:
            logger.info("Rejected transition: violation %d not found", violation_id)
            raise NotFoundError(f"Violation {violation_id} not found")
        if property_id is not None and violation.property_id != property_id:
            logger.info(
                "Rejected transition: violation %d does not belong to property %d",
                violation_id,
                property_id,
            )
            raise UnauthorizedError(
                f"Violation {violation_id} does not belong to property {property_id}"
            )
        logger.info(
            "Rejected transition: violation %d is %s (%s)",
            violation_id,
            violation.status.value,
            wrong_state,
        )
        raise InvalidTransitionError(f"Violation {violation_id} {wrong_state}")

    async def _finish_transition(
        self,
        violation_id: int,
        action: str,
        actor: str | None,
        evidence_ref: str | None = None,
    ) -> Violation:
        violation = await self._get_violation(violation_id)
        changes: dict[str, Any] = {"status": violation.status.value}
        if evidence_ref is not None:
            changes["evidence_ref"] = evidence_ref
        AuditService.log(self.session, "violation", violation_id, action, actor, changes)
        await self.session.commit()
        logger.info("Violation %d %s -> %s", violation_id, action, violation.status.value)

        await self._refresh_property(violation.property_id)
        return await self._get_violation(violation_id)

    async def _refresh_property(self, property_id: int) -> MonthlyBill:
        # Scores first: the bill refresh must see the new open set
        await self.scoring.recalc(property_id)
        return await self.billing.ensure_current_bill(property_id)

    async def _deliver_notice(
        self, violation: Violation, bill: MonthlyBill, actor: str | None
    ) -> NotificationResult:
        property = await self.session.get(Property, violation.property_id, populate_existing=True)
        if self.notifier is None:
            result = NotificationResult(sent=False, error="email notifications not configured")
        else:
            result = await self.notifier.send_violation_notice(property, violation, bill)

        if result.sent:
            await self.session.execute(
                update(Violation)
                .where(Violation.id == violation.id)
                .values(notice_sent_at=self.clock.now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            await self._get_violation(violation.id)
            logger.info("Notice for violation %d sent to %s", violation.id, property.owner_email)
        else:
            logger.warning(
                "Notice for violation %d to %s failed: %s",
                violation.id,
                property.owner_email,
                result.error,
            )
            AuditService.log(
                self.session,
                "violation",
                violation.id,
                "notice_failed",
                actor,
                {"recipient": property.owner_email, "error": result.error},
            )
            await self.session.commit()
        return result

    async def _get_violation(self, violation_id: int) -> Violation | None:
        return await self.session.get(Violation, violation_id, populate_existing=True)


__all__ = ["ViolationOutcome", "ViolationService"]
