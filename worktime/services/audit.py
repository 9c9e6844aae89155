from typing import Any, List, Optional

from worktime.services.base import BaseService
from worktime.models.audit_log import AuditLog
from worktime.core.logging import request_id_var


class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[Any],
        user_id: Optional[int],
        details: dict,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ) -> AuditLog:
        """
        Create an audit log entry.
        Strictly append-only. Flushed in the caller's unit of work so the
        entry commits or rolls back together with the action it describes.
        """
        def sanitize(obj):
            if hasattr(obj, "model_dump"):
                return obj.model_dump(mode="json")
            if isinstance(obj, dict):
                return {k: sanitize(v) for k, v in obj.items()}
            if isinstance(obj, (list, tuple)):
                return [sanitize(i) for i in obj]
            if hasattr(obj, "isoformat"):
                return obj.isoformat()
            return obj

        db_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            user_id=user_id,
            details=sanitize(details),
            before_state=sanitize(before_state),
            after_state=sanitize(after_state),
            request_id=request_id_var.get() or None,
            created_at=self.clock.utcnow_naive(),
        )
        self.db.add(db_log)
        self.db.flush()
        return db_log

    def entries(self, action: Optional[str] = None, entity_type: Optional[str] = None, limit: int = 100) -> List[AuditLog]:
        query = self.db.query(AuditLog)
        if action:
            query = query.filter(AuditLog.action == action)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
