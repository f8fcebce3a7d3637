"""Property ORM model for homes inside the managed community."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from covenant.models import Base, BaseModel


class Property(Base, BaseModel):
    """Model representing a residential property and its persisted scores.

    The three score columns are written only by the scoring service, always
    together in a single UPDATE, so readers never observe a partial triple.
    """

    __tablename__ = "properties"

    # Identification and owner contact
    address: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    owner_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    owner_email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Owner email used for notices and tenant lookup",
    )
    owner_phone: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    resident_since: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    # Billing basis
    land_area_sqft: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Land area in square feet, drives the monthly base amount",
    )

    # Rules text extracted from the property's rules document
    rules_text: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Rulebook text handed to the photo-analysis collaborator",
    )

    # Scores (0-100)
    compliance_score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100,
    )
    financial_score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100,
    )
    combined_score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100,
        comment="60% compliance + 40% financial; read when pricing new fines",
    )

    # Relationships
    violations: Mapped[list["Violation"]] = relationship(  # noqa: F821
        "Violation",
        back_populates="property",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    bills: Mapped[list["MonthlyBill"]] = relationship(  # noqa: F821
        "MonthlyBill",
        back_populates="property",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("idx_property_compliance", "compliance_score"),)

    def __repr__(self) -> str:
        return (
            f"<Property(id={self.id}, address={self.address!r}, "
            f"land_area_sqft={self.land_area_sqft}, compliance_score={self.compliance_score}, "
            f"financial_score={self.financial_score}, combined_score={self.combined_score})>"
        )


__all__ = ["Property"]
