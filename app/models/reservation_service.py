from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class ReservationService(Base):
    """Line item joining a reservation to one booked service."""

    __tablename__ = "reservation_services"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(
        Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False
    )
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    is_base_service = Column(Boolean, default=False, nullable=False)

    # Service details at time of booking (for historical accuracy)
    service_name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index(
            "uq_reservation_services_one_base",
            "reservation_id",
            unique=True,
            postgresql_where=text("is_base_service"),
            sqlite_where=text("is_base_service = 1"),
        ),
    )

    reservation = relationship("Reservation", back_populates="line_items")
    service = relationship("Service")

    def __repr__(self):
        return (
            f"<ReservationService(id={self.id}, reservation_id={self.reservation_id}, "
            f"service_id={self.service_id}, base={self.is_base_service}, "
            f"price=${self.price})>"
        )
