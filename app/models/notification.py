from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class Notification(Base):
    """Outbound domain event for the external notification service."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(50), nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    user_id = Column(String(64), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)

    def __repr__(self):
        return (
            f"<Notification(id={self.id}, type='{self.type}', "
            f"reservation_id={self.reservation_id}, user_id='{self.user_id}')>"
        )
