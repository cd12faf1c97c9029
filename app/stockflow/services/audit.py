import logging
from dataclasses import dataclass
from datetime import datetime

from app.stockflow.db.models import AuditEvent
from app.stockflow.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    user_id: str | None
    trace_id: str | None
    actor: str
    action: str
    entity_type: str | None
    entity_id: str | None
    before: dict | None
    after: dict | None
    metadata: dict | None
    result: str
    actor_role: str | None = None


class AuditService:
    """Best-effort audit logging.

    Strategy: failures are logged and swallowed to avoid breaking request flows.
    Events are committed immediately, so callers record them outside of an open unit of work.
    """

    def __init__(self, db):
        self.db = db
        self.repo = AuditRepository(db)

    def record_event(self, payload: AuditEventPayload) -> None:
        metadata = dict(payload.metadata or {})
        metadata.setdefault("actor_role", payload.actor_role)
        try:
            event = AuditEvent(
                user_id=payload.user_id,
                trace_id=payload.trace_id,
                actor=payload.actor,
                action=payload.action,
                entity_type=payload.entity_type or "unknown",
                entity_id=payload.entity_id,
                before_payload=payload.before,
                after_payload=payload.after,
                event_metadata=metadata,
                result=payload.result,
                created_at=datetime.utcnow(),
            )
            self.repo.create(event)
        except Exception:
            self.db.rollback()
            logger.exception(
                "Failed to write audit event",
                extra={
                    "action": payload.action,
                    "trace_id": payload.trace_id,
                    "entity_id": payload.entity_id,
                },
            )
