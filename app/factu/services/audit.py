import logging
from dataclasses import dataclass
from datetime import datetime

from app.factu.db.models import AuditEvent
from app.factu.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    branch_id: str | None
    user_id: str | None
    trace_id: str | None
    action: str
    entity_type: str
    entity_id: str | None
    result: str = "success"
    before: dict | None = None
    after: dict | None = None
    metadata: dict | None = None


class AuditService:
    """Best-effort audit logging.

    Failures are logged and swallowed so they never break a sale or a webhook.
    """

    def __init__(self, db):
        self.repo = AuditRepository(db)

    def record_event(self, payload: AuditEventPayload) -> None:
        try:
            event = AuditEvent(
                branch_id=payload.branch_id,
                user_id=payload.user_id,
                trace_id=payload.trace_id,
                action=payload.action,
                entity_type=payload.entity_type,
                entity_id=payload.entity_id,
                before_payload=payload.before,
                after_payload=payload.after,
                event_metadata=dict(payload.metadata or {}),
                result=payload.result,
                created_at=datetime.utcnow(),
            )
            self.repo.create(event)
        except Exception:
            self.repo.db.rollback()
            logger.exception(
                "Failed to write audit event",
                extra={"action": payload.action, "trace_id": payload.trace_id, "entity_id": payload.entity_id},
            )
