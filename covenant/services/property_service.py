"""Property read models and the explicit deletion cascade."""

import logging
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.models.monthly_bill import MonthlyBill
from covenant.models.property import Property
from covenant.models.violation import Severity, Violation, ViolationCategory, ViolationStatus
from covenant.services.audit_service import AuditService
from covenant.services.errors import NotFoundError

logger = logging.getLogger(__name__)


class PropertyOverview(NamedTuple):
    """Property with open-violation count and last violation activity."""

    property: Property
    open_violations: int
    last_activity: datetime | None


class TenantView(NamedTuple):
    """Everything an owner sees about their own property."""

    property: Property
    violations: list[Violation]
    bills: list[MonthlyBill]


class TimelineEntry(NamedTuple):
    violation_id: int
    created_at: datetime
    severity: Severity
    category: ViolationCategory
    status: ViolationStatus
    property_address: str


class PropertyService:
    """Service for property queries and deletion."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_property(self, property_id: int) -> Property:
        """Get property by ID.

        Raises:
            NotFoundError: If the property does not exist
        """
        prop = await self.session.get(Property, property_id, populate_existing=True)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")
        return prop

    async def list_properties(self) -> list[PropertyOverview]:
        """All properties, worst compliance score first."""
        open_count = func.count(Violation.id).filter(Violation.status == ViolationStatus.OPEN)
        result = await self.session.execute(
            select(Property, open_count, func.max(Violation.created_at))
            .outerjoin(Violation, Violation.property_id == Property.id)
            .group_by(Property.id)
            .order_by(Property.compliance_score.asc(), Property.id.asc())
            .execution_options(populate_existing=True)
        )
        return [
            PropertyOverview(property=prop, open_violations=int(count or 0), last_activity=last)
            for prop, count, last in result.all()
        ]

    async def get_by_owner_email(self, email: str) -> TenantView:
        """Tenant view: property owned by email with violations and bills, newest first.

        Raises:
            NotFoundError: If no property is registered to this email
        """
        prop = (
            await self.session.execute(
                select(Property)
                .where(func.lower(Property.owner_email) == email.strip().lower())
                .order_by(Property.id)
                .limit(1)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if prop is None:
            raise NotFoundError(f"No property registered to {email}")

        violations = (
            await self.session.execute(
                select(Violation)
                .where(Violation.property_id == prop.id)
                .order_by(Violation.created_at.desc(), Violation.id.desc())
            )
        ).scalars().all()
        bills = (
            await self.session.execute(
                select(MonthlyBill)
                .where(MonthlyBill.property_id == prop.id)
                .order_by(MonthlyBill.billing_month.desc())
            )
        ).scalars().all()
        return TenantView(property=prop, violations=list(violations), bills=list(bills))

    async def violations_timeline(self) -> list[TimelineEntry]:
        """All violations across the community, oldest first."""
        result = await self.session.execute(
            select(
                Violation.id,
                Violation.created_at,
                Violation.severity,
                Violation.category,
                Violation.status,
                Property.address,
            )
            .join(Property, Property.id == Violation.property_id)
            .order_by(Violation.created_at.asc(), Violation.id.asc())
        )
        return [TimelineEntry(*row) for row in result.all()]

    async def delete_property(self, property_id: int, actor: str | None = None) -> None:
        """Delete a property with its bills and violations in one transaction.

        Bills and violations are removed explicitly before the property so no
        reader ever observes orphaned rows, whatever the backend's FK settings.

        Raises:
            NotFoundError: If the property does not exist
        """
        exists = await self.session.scalar(
            select(Property.id).where(Property.id == property_id).with_for_update()
        )
        if exists is None:
            raise NotFoundError(f"Property {property_id} not found")

        bills = await self.session.execute(
            delete(MonthlyBill).where(MonthlyBill.property_id == property_id)
        )
        violations = await self.session.execute(
            delete(Violation).where(Violation.property_id == property_id)
        )
        await self.session.execute(delete(Property).where(Property.id == property_id))
        AuditService.log(
            self.session,
            "property",
            property_id,
            "delete",
            actor,
            {"bills": bills.rowcount, "violations": violations.rowcount},
        )
        await self.session.commit()
        logger.info(
            "Deleted property %d with %d bills and %d violations",
            property_id,
            bills.rowcount,
            violations.rowcount,
        )


__all__ = ["PropertyOverview", "PropertyService", "TenantView", "TimelineEntry"]
