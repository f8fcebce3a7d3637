"""Monthly bill ORM model: one bill per property per calendar month."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from covenant.models import Base, BaseModel, enum_values


class BillStatus(str, Enum):
    """Status of a monthly bill.

    Only PENDING bills may have their monetary fields refreshed; OVERDUE and
    PAID bills are frozen. No transition ever returns a bill to PENDING.
    """

    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"


class MonthlyBill(Base, BaseModel):
    """Recurring monthly charge for a property.

    billing_month is always the first day of a calendar month and, together with
    property_id, uniquely identifies the bill.
    """

    __tablename__ = "monthly_bills"

    property_id: Mapped[int] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    billing_month: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="First day of the billed calendar month",
    )

    # Amounts
    base_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    violation_fines: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="15th of billing_month",
    )
    status: Mapped[BillStatus] = mapped_column(
        SQLEnum(BillStatus, native_enum=False, values_callable=enum_values, length=10),
        nullable=False,
        default=BillStatus.PENDING,
        index=True,
    )
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set once when the bill turns overdue; guards against duplicate reminders",
    )
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def is_frozen(self) -> bool:
        return self.status != BillStatus.PENDING

    property: Mapped["Property"] = relationship(  # noqa: F821
        "Property",
        back_populates="bills",
    )

    __table_args__ = (
        UniqueConstraint("property_id", "billing_month", name="uq_bill_property_month"),
        Index("idx_bill_status_due", "status", "due_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<MonthlyBill(id={self.id}, property_id={self.property_id}, "
            f"billing_month={self.billing_month}, total_amount={self.total_amount}, "
            f"status={self.status})>"
        )


__all__ = ["MonthlyBill", "BillStatus"]
