from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.exceptions import SchedulingError
from app.models.reservation import ReservationStatus


class ReservationRequest(BaseModel):
    """Booking request assembled across the booking form steps.

    Instances are immutable; the ``with_*`` helpers return updated copies so
    the caller can pass the request by value between steps.
    """

    recipient_name: str = Field(..., max_length=255)
    service_ids: List[int] = Field(default_factory=list)
    seat_id: int
    reserved_date: date
    reserved_time: time

    model_config = {"frozen": True}

    def with_service(self, service_id: int) -> "ReservationRequest":
        if service_id in self.service_ids:
            return self
        return self.model_copy(update={"service_ids": [*self.service_ids, service_id]})

    def without_service(self, service_id: int) -> "ReservationRequest":
        return self.model_copy(
            update={"service_ids": [s for s in self.service_ids if s != service_id]}
        )

    def with_slot(
        self, seat_id: int, reserved_date: date, reserved_time: time
    ) -> "ReservationRequest":
        return self.model_copy(
            update={
                "seat_id": seat_id,
                "reserved_date": reserved_date,
                "reserved_time": reserved_time,
            }
        )


class ReservationCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ReservationStatusUpdate(BaseModel):
    new_status: ReservationStatus


class ReservationReschedule(BaseModel):
    new_date: date
    new_time: time


class OperationResult(BaseModel):
    """Typed outcome of every mutating core operation."""

    success: bool
    reservation_id: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, reservation_id: Optional[int] = None, **details: Any):
        return cls(success=True, reservation_id=reservation_id, details=details)

    @classmethod
    def failure(cls, error: SchedulingError, reservation_id: Optional[int] = None):
        return cls(
            success=False,
            reservation_id=reservation_id,
            error=error.message,
            error_type=error.error_type,
            details=error.details,
        )


# Response schemas
class ReservationLineItem(BaseModel):
    id: int
    service_id: int
    service_name: str
    is_base_service: bool
    price: Decimal

    class Config:
        from_attributes = True


class Reservation(BaseModel):
    id: int
    uuid: UUID
    user_id: str
    service_recipient: str
    seat_id: int
    barber_id: int
    reserved_datetime: datetime
    status: ReservationStatus
    previous_status: Optional[ReservationStatus] = None
    total_price: Decimal
    is_rescheduled: bool
    rescheduled_from_datetime: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    line_items: List[ReservationLineItem] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ReservationList(BaseModel):
    reservations: List[Reservation]
    total_count: int


class RevenueSummary(BaseModel):
    today: Decimal = Decimal("0")
    this_week: Decimal = Decimal("0")
    this_month: Decimal = Decimal("0")


class ReservationStats(BaseModel):
    counts: Dict[str, int] = Field(default_factory=dict)
    revenue: RevenueSummary = Field(default_factory=RevenueSummary)
    generated_at: datetime
