"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


def enum_values(enum_cls) -> list[str]:
    """Persist enum values ("open") rather than member names ("OPEN")."""
    return [member.value for member in enum_cls]


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from covenant.models.audit_log import AuditLog  # noqa: E402
from covenant.models.monthly_bill import BillStatus, MonthlyBill  # noqa: E402
from covenant.models.property import Property  # noqa: E402
from covenant.models.violation import (  # noqa: E402
    Severity,
    Violation,
    ViolationCategory,
    ViolationStatus,
)

__all__ = [
    "Base",
    "BaseModel",
    "AuditLog",
    "BillStatus",
    "MonthlyBill",
    "Property",
    "Severity",
    "Violation",
    "ViolationCategory",
    "ViolationStatus",
]
