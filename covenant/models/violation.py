"""Violation ORM model for rule violations recorded against a property."""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from covenant.models import Base, BaseModel, enum_values


class ViolationStatus(str, Enum):
    """Lifecycle status of a violation."""

    OPEN = "open"
    """Initial state; counts toward the compliance deduction"""

    PENDING_REVIEW = "pending_review"
    """Owner reported the issue fixed; awaiting admin review"""

    RESOLVED = "resolved"
    """Admin confirmed the fix; no further score impact"""


class Severity(str, Enum):
    """Violation severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ViolationCategory(str, Enum):
    """Violation category tag."""

    PARKING = "parking"
    GARBAGE = "garbage"
    LAWN = "lawn"
    EXTERIOR = "exterior"
    STRUCTURE = "structure"
    OTHER = "other"


class Violation(Base, BaseModel):
    """A single rule violation recorded against one property.

    fine_amount is priced once at creation from the property's combined score
    at that instant and is never recalculated afterwards.
    """

    __tablename__ = "violations"

    property_id: Mapped[int] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # What was observed
    category: Mapped[ViolationCategory] = mapped_column(
        SQLEnum(ViolationCategory, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
    )
    severity: Mapped[Severity] = mapped_column(
        SQLEnum(Severity, native_enum=False, values_callable=enum_values, length=10),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    rule_cited: Mapped[str | None] = mapped_column(Text, nullable=True)
    remediation: Mapped[str | None] = mapped_column(Text, nullable=True)
    deadline_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=14,
        comment="Days from creation the owner has to remediate",
    )
    image_url: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Photo reference captured when the violation was recorded",
    )
    evidence_ref: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Photo reference attached by the owner when flagging a fix",
    )

    status: Mapped[ViolationStatus] = mapped_column(
        SQLEnum(ViolationStatus, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
        default=ViolationStatus.OPEN,
        index=True,
    )
    fine_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    notice_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def deadline_at(self) -> datetime:
        """Remediation deadline (creation time plus deadline_days)."""
        return self.created_at + timedelta(days=self.deadline_days)

    property: Mapped["Property"] = relationship(  # noqa: F821
        "Property",
        back_populates="violations",
    )

    __table_args__ = (
        Index("idx_violation_property_status", "property_id", "status"),
        Index("idx_violation_property_created", "property_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Violation(id={self.id}, property_id={self.property_id}, "
            f"category={self.category}, severity={self.severity}, status={self.status}, "
            f"fine_amount={self.fine_amount})>"
        )


__all__ = ["Violation", "ViolationStatus", "Severity", "ViolationCategory"]
