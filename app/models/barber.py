from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class Barber(Base):
    """Barber profile linked to an externally managed user identity."""

    __tablename__ = "barbers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    specialization = Column(String(255), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    uid_code = Column(String(64), unique=True, nullable=True)  # attendance badge

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    seat = relationship("Seat", back_populates="barber", uselist=False)

    def __repr__(self):
        return f"<Barber(id={self.id}, name='{self.display_name}')>"
