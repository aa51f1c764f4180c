from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.auth import get_current_identity
from app.api.deps.database import get_db
from app.api.errors import status_code_for, to_http_exception
from app.core.exceptions import SchedulingError
from app.models.reservation import ReservationStatus
from app.schemas.auth import Identity
from app.schemas.reservation import (
    OperationResult,
    Reservation,
    ReservationCancel,
    ReservationList,
    ReservationRequest,
    ReservationReschedule,
    ReservationStatusUpdate,
)
from app.schemas.scheduling import DayAvailability
from app.services.scheduling import SchedulingService

router = APIRouter()


def _respond(
    result: OperationResult,
    response: Response,
    success_status: int = status.HTTP_200_OK,
) -> OperationResult:
    response.status_code = (
        success_status if result.success else status_code_for(result.error_type)
    )
    return result


@router.get("/availability", response_model=DayAvailability)
async def get_availability(
    day: date = Query(..., alias="date"),
    seat_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Bookable start times for a day, optionally for a single seat."""
    try:
        return await SchedulingService(db).get_available_time_slots(day, seat_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    request: ReservationRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Book a reservation for the calling client."""
    result = await SchedulingService(db).create_reservation(identity.user_id, request)
    return _respond(result, response, status.HTTP_201_CREATED)


@router.get("/mine", response_model=ReservationList)
async def get_my_reservations(
    status_filter: Optional[List[ReservationStatus]] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    reservations = await SchedulingService(db).list_user_reservations(
        identity.user_id, status_filter
    )
    return ReservationList(
        reservations=[Reservation.model_validate(r) for r in reservations],
        total_count=len(reservations),
    )


@router.get("/{reservation_id}", response_model=Reservation)
async def get_reservation(
    reservation_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    try:
        return await SchedulingService(db).get_reservation(reservation_id, identity)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/{reservation_id}/cancel", response_model=OperationResult)
async def cancel_reservation(
    reservation_id: int,
    response: Response,
    cancel_data: Optional[ReservationCancel] = None,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    reason = cancel_data.reason if cancel_data else None
    result = await SchedulingService(db).cancel_reservation(
        reservation_id, identity, reason
    )
    return _respond(result, response)


@router.patch("/{reservation_id}/status", response_model=OperationResult)
async def update_reservation_status(
    reservation_id: int,
    status_update: ReservationStatusUpdate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Move a reservation through its lifecycle (admin)."""
    result = await SchedulingService(db).update_status(
        reservation_id, status_update.new_status, identity
    )
    return _respond(result, response)


@router.post("/{reservation_id}/reschedule", response_model=OperationResult)
async def reschedule_reservation(
    reservation_id: int,
    reschedule_data: ReservationReschedule,
    response: Response,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    result = await SchedulingService(db).reschedule_reservation(
        reservation_id, reschedule_data.new_date, reschedule_data.new_time, identity
    )
    return _respond(result, response)
