"""Audit service for logging violation, bill and property lifecycle events."""

from sqlalchemy.ext.asyncio import AsyncSession

from covenant.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Provides static method to create minimal audit log entries. The entry is
    added to the session and committed with the caller's unit of work.
    """

    @staticmethod
    def log(
        db: AsyncSession,
        entity_type: str,
        entity_id: int,
        action: str,
        actor: str | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            db: Database session
            entity_type: Type of entity ("violation", "bill", "property")
            entity_id: Primary key of the entity
            action: Action performed ("create", "pay", "overdue", etc.)
            actor: Identity supplied by the calling layer (optional)
            changes: Optional JSON snapshot of changed fields

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
            changes=changes,
        )
        db.add(audit)
        return audit


__all__ = ["AuditService"]
