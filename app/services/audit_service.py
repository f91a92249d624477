from sqlalchemy.orm import Session
from typing import Optional, Dict, Any

from app.models.audit_log import AuditLog


class AuditService:
    @staticmethod
    def log_action(
        db: Session,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        source: str = "api",
        commit: bool = True
    ) -> AuditLog:
        """Log an audit action.

        Pass ``commit=False`` to stage the entry in the caller's transaction so
        it lands together with the change it describes.
        """
        log = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            source=source,
            changes=changes
        )
        db.add(log)
        if commit:
            db.commit()
        return log

    @staticmethod
    def log_status_change(
        db: Session,
        entity_type: str,
        entity_id: str,
        old_status: Any,
        new_status: Any,
        user_id: Optional[str] = None,
        source: str = "api",
        extra: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        changes = {
            "from": getattr(old_status, "value", old_status),
            "to": getattr(new_status, "value", new_status),
            "source": source,
        }
        if extra:
            changes.update(extra)
        return AuditService.log_action(
            db=db,
            action=f"{entity_type}_status_changed",
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            changes=changes,
            source=source,
            commit=False
        )
