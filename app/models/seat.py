from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class Seat(Base):
    """Physical chair in the shop, optionally staffed by one barber."""

    __tablename__ = "seats"

    id = Column(Integer, primary_key=True, index=True)
    seat_number = Column(Integer, unique=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    barber_id = Column(Integer, ForeignKey("barbers.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    barber = relationship("Barber", back_populates="seat")

    @property
    def is_bookable(self) -> bool:
        return bool(self.is_available) and self.barber_id is not None

    def __repr__(self):
        return (
            f"<Seat(id={self.id}, number={self.seat_number}, "
            f"barber_id={self.barber_id}, available={self.is_available})>"
        )
