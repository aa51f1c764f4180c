from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class AdminLog(Base):
    """Audit record of a mutating operation, consumed by the admin log view."""

    __tablename__ = "admin_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(String(64), nullable=True)  # None for system actions
    action = Column(String(50), nullable=False)
    target_table = Column(String(50), nullable=False)
    target_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_admin_logs_target", "target_table", "target_id"),)

    def __repr__(self):
        return (
            f"<AdminLog(id={self.id}, action='{self.action}', "
            f"target={self.target_table}:{self.target_id})>"
        )
