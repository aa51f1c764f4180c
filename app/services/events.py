import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.admin_log import AdminLog
from app.models.notification import Notification
from app.schemas.events import AuditRecord, DomainEvent

logger = structlog.get_logger(__name__)


class EventPublisher:
    """Record outbound domain events and audit entries.

    Rows are added to the caller's session, so they commit or roll back
    together with the reservation change that produced them. Delivery and
    formatting belong to the notification and admin-log consumers.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def emit_event(self, event: DomainEvent) -> Notification:
        notification = Notification(
            type=event.type.value,
            reservation_id=event.reservation_id,
            user_id=event.user_id,
            details=event.details,
        )
        self.db.add(notification)
        logger.info(
            "Domain event emitted",
            event_type=event.type.value,
            reservation_id=event.reservation_id,
            user_id=event.user_id,
        )
        return notification

    def audit(self, record: AuditRecord) -> AdminLog:
        entry = AdminLog(
            actor_id=record.actor_id,
            action=record.action.value,
            target_table=record.target_table,
            target_id=record.target_id,
            details=record.details,
        )
        self.db.add(entry)
        logger.info(
            "Audit record written",
            action=record.action.value,
            actor_id=record.actor_id,
            target_table=record.target_table,
            target_id=record.target_id,
        )
        return entry
