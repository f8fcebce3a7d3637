"""Audit log model for tracking violation and bill lifecycle events."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from covenant.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for tracking changes to violations, bills and properties.

    Records who (actor) did what (action) to which entity (entity_type, entity_id)
    and optional field snapshots (changes). Entries outlive the audited entity.
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(String(50), index=True)
    """Entity type being audited: "violation", "bill", "property"."""

    entity_id: Mapped[int] = mapped_column(index=True)
    """Primary key of the entity being audited."""

    action: Mapped[str] = mapped_column(String(50))
    """Action performed: "create", "flag_fixed", "pay", "reminder_failed", etc."""

    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    """Identity supplied by the calling layer. None for system actions (sweep)."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    """Optional JSON snapshot of changed fields: {"status": "overdue"}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor={self.actor}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]
