import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base
from app.core.types import UTCDateTime


class ReservationStatus(enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    ON_HOLD = "on_hold"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that occupy a barber's schedule
ACTIVE_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.ACCEPTED,
    ReservationStatus.ON_HOLD,
    ReservationStatus.ONGOING,
)
ACTIVE_STATUS_VALUES = tuple(s.value for s in ACTIVE_STATUSES)

TERMINAL_STATUSES = (ReservationStatus.COMPLETED, ReservationStatus.CANCELLED)

SYSTEM_ACTOR = "system"

_ACTIVE_PREDICATE = "status IN ('pending', 'accepted', 'on_hold', 'ongoing')"


class Reservation(Base):
    """Barber booking with its status lifecycle and cancellation metadata."""

    __tablename__ = "reservations"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    service_recipient = Column(String(255), nullable=False)

    # Who and when
    seat_id = Column(Integer, ForeignKey("seats.id"), nullable=False)
    barber_id = Column(Integer, ForeignKey("barbers.id"), nullable=False, index=True)
    reserved_datetime = Column(UTCDateTime, nullable=False, index=True)

    # Status management
    status = Column(
        String(20), nullable=False, default=ReservationStatus.PENDING.value, index=True
    )
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(UTCDateTime, nullable=True)

    # Pricing
    total_price = Column(Numeric(10, 2), nullable=False)

    # Rescheduling
    is_rescheduled = Column(Boolean, default=False, nullable=False)
    rescheduled_from_datetime = Column(UTCDateTime, nullable=True)

    # Cancellation / completion
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(64), nullable=True)  # actor id or "system"
    cancelled_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index(
            "uq_reservations_barber_slot_active",
            "barber_id",
            "reserved_datetime",
            unique=True,
            postgresql_where=text(_ACTIVE_PREDICATE),
            sqlite_where=text(_ACTIVE_PREDICATE),
        ),
        CheckConstraint("total_price >= 0", name="check_non_negative_total_price"),
    )

    # Relationships
    seat = relationship("Seat")
    barber = relationship("Barber")
    line_items = relationship(
        "ReservationService",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationService.id",
    )

    def can_transition_to(self, new_status: ReservationStatus) -> bool:
        """Check if reservation can transition to the new status."""
        current = ReservationStatus(self.status)

        allowed_transitions = {
            ReservationStatus.PENDING: [
                ReservationStatus.ACCEPTED,
                ReservationStatus.ON_HOLD,
                ReservationStatus.CANCELLED,
            ],
            ReservationStatus.ACCEPTED: [
                ReservationStatus.ACCEPTED,
                ReservationStatus.ON_HOLD,
                ReservationStatus.ONGOING,
                ReservationStatus.COMPLETED,
                ReservationStatus.CANCELLED,
            ],
            ReservationStatus.ON_HOLD: [
                ReservationStatus.ACCEPTED,
                ReservationStatus.CANCELLED,
            ],
            ReservationStatus.ONGOING: [
                ReservationStatus.COMPLETED,
                ReservationStatus.CANCELLED,
            ],
            ReservationStatus.COMPLETED: [],  # Final state
            ReservationStatus.CANCELLED: [],  # Final state
        }

        return new_status in allowed_transitions.get(current, [])

    def transition_to(
        self, new_status: ReservationStatus, now: Optional[datetime] = None
    ) -> bool:
        """Move to ``new_status`` and stamp the status-specific timestamps."""
        if not self.can_transition_to(new_status):
            return False

        now = now or datetime.now(timezone.utc)
        self.previous_status = self.status
        self.status = new_status.value
        self.status_changed_at = now

        if new_status == ReservationStatus.CANCELLED:
            self.cancelled_at = now
        elif new_status == ReservationStatus.COMPLETED:
            self.completed_at = now

        return True

    def cancel(
        self, reason: str, cancelled_by: str, now: Optional[datetime] = None
    ) -> bool:
        if not self.transition_to(ReservationStatus.CANCELLED, now):
            return False
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by
        return True

    def reschedule(self, new_datetime: datetime, now: Optional[datetime] = None) -> bool:
        """Move an on-hold (or already rescheduled) booking to a new instant."""
        if not self.is_reschedulable:
            return False
        self.rescheduled_from_datetime = self.reserved_datetime
        self.reserved_datetime = new_datetime
        self.is_rescheduled = True
        if self.status != ReservationStatus.ACCEPTED.value:
            self.transition_to(ReservationStatus.ACCEPTED, now)
        else:
            self.status_changed_at = now or datetime.now(timezone.utc)
        return True

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUS_VALUES

    @property
    def is_terminal(self) -> bool:
        return self.status in (s.value for s in TERMINAL_STATUSES)

    @property
    def is_reschedulable(self) -> bool:
        return self.status == ReservationStatus.ON_HOLD.value or (
            self.status == ReservationStatus.ACCEPTED.value and bool(self.is_rescheduled)
        )

    @property
    def allows_generic_status_edit(self) -> bool:
        """A rescheduled, accepted booking only takes reschedule or cancel."""
        return not (
            self.is_rescheduled and self.status == ReservationStatus.ACCEPTED.value
        )

    @property
    def base_line_item(self):
        return next((item for item in self.line_items if item.is_base_service), None)

    def is_past_due(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.reserved_datetime < now

    def __repr__(self):
        return (
            f"<Reservation(id={self.id}, status='{self.status}', "
            f"datetime='{self.reserved_datetime}', barber_id={self.barber_id})>"
        )
