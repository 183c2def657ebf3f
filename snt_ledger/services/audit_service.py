"""Audit service for logging ledger mutations."""

from sqlalchemy.orm import Session

from snt_ledger.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Provides static method to create append-only audit entries inside the
    caller's transaction, so a rolled back mutation leaves no entry.
    """

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int | None,
        action: str,
        actor_id: str | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            db: Database session
            entity_type: Type of entity ("payment", "allocation", "penalty", etc.)
            entity_id: Primary key of the entity
            action: Action performed ("manual_allocate", "void", "close", etc.)
            actor_id: Staff member who performed the action (optional)
            changes: Optional JSON snapshot of changed fields

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=changes,
        )
        db.add(audit)
        return audit

    @staticmethod
    def list_for(db: Session, entity_type: str, entity_id: int | None = None) -> list[AuditLog]:
        """Audit entries for an entity type (optionally one entity), oldest first."""
        query = db.query(AuditLog).filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)
        return query.order_by(AuditLog.id).all()


__all__ = ["AuditService"]
