from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

import structlog
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import ConflictError, NotFoundError
from app.models.barber import Barber
from app.models.reservation import (
    ACTIVE_STATUS_VALUES,
    SYSTEM_ACTOR,
    Reservation,
    ReservationStatus,
)
from app.models.reservation_service import ReservationService

logger = structlog.get_logger(__name__)

SLOT_TAKEN_MESSAGE = "This time slot was just booked by another customer."


class ReservationStore:
    """Persistence for reservations and their line items.

    Callers own the transaction; nothing here commits.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, reservation_id: int, for_update: bool = False) -> Reservation:
        query = (
            select(Reservation)
            .options(selectinload(Reservation.line_items))
            .where(Reservation.id == reservation_id)
        )
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        reservation = result.scalar_one_or_none()
        if not reservation:
            raise NotFoundError(
                f"Reservation {reservation_id} not found",
                {"reservation_id": reservation_id},
            )
        return reservation

    async def lock_barber(self, barber_id: int) -> Barber:
        """Row-lock the barber so bookings for the same barber serialise."""
        result = await self.db.execute(
            select(Barber).where(Barber.id == barber_id).with_for_update()
        )
        barber = result.scalar_one_or_none()
        if not barber:
            raise NotFoundError(f"Barber {barber_id} not found", {"barber_id": barber_id})
        return barber

    async def active_reservations_for_barber(
        self,
        barber_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
    ) -> list[Reservation]:
        query = (
            select(Reservation)
            .where(
                and_(
                    Reservation.barber_id == barber_id,
                    Reservation.status.in_(ACTIVE_STATUS_VALUES),
                    Reservation.reserved_datetime >= start,
                    Reservation.reserved_datetime <= end,
                )
            )
            .order_by(Reservation.reserved_datetime)
        )
        if exclude_id is not None:
            query = query.where(Reservation.id != exclude_id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def insert_reservation(
        self, reservation: Reservation, line_items: Sequence[ReservationService]
    ) -> Reservation:
        """Stage the header and all line items and write them in one flush."""
        reservation.line_items = list(line_items)
        self.db.add(reservation)
        await self.flush()
        return reservation

    async def flush(self) -> None:
        """Flush pending writes, reporting a lost exact-slot race as a conflict."""
        try:
            await self.db.flush()
        except IntegrityError as e:
            logger.warning("Reservation write hit a uniqueness constraint", error=str(e))
            raise ConflictError(
                SLOT_TAKEN_MESSAGE, {"constraint": "uq_reservations_barber_slot_active"}
            ) from e

    async def passed_accepted(self, now: datetime) -> list[tuple[int, str]]:
        """Ids and owners of accepted reservations whose start has passed."""
        result = await self.db.execute(
            select(Reservation.id, Reservation.user_id)
            .where(
                and_(
                    Reservation.status == ReservationStatus.ACCEPTED.value,
                    Reservation.reserved_datetime < now,
                )
            )
            .order_by(Reservation.reserved_datetime)
        )
        return list(result.all())

    async def cancel_if_passed(
        self, reservation_id: int, now: datetime, reason: str
    ) -> bool:
        """Cancel one reservation only if it is still accepted and past due.

        Returns whether a row changed; a reservation cancelled by someone else
        in the meantime no longer matches.
        """
        result = await self.db.execute(
            update(Reservation)
            .where(
                and_(
                    Reservation.id == reservation_id,
                    Reservation.status == ReservationStatus.ACCEPTED.value,
                    Reservation.reserved_datetime < now,
                )
            )
            .values(
                status=ReservationStatus.CANCELLED.value,
                previous_status=ReservationStatus.ACCEPTED.value,
                status_changed_at=now,
                cancellation_reason=reason,
                cancelled_by=SYSTEM_ACTOR,
                cancelled_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def list_for_user(
        self, user_id: str, statuses: Optional[Sequence[ReservationStatus]] = None
    ) -> list[Reservation]:
        query = (
            select(Reservation)
            .options(selectinload(Reservation.line_items))
            .where(Reservation.user_id == user_id)
            .order_by(Reservation.reserved_datetime.desc())
        )
        if statuses:
            query = query.where(Reservation.status.in_([s.value for s in statuses]))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def status_counts(self) -> dict[str, int]:
        result = await self.db.execute(
            select(Reservation.status, func.count(Reservation.id)).group_by(
                Reservation.status
            )
        )
        counts = {status.value: 0 for status in ReservationStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def completed_revenue_since(self, since: datetime) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Reservation.total_price), 0)).where(
                and_(
                    Reservation.status == ReservationStatus.COMPLETED.value,
                    Reservation.completed_at >= since,
                )
            )
        )
        return Decimal(str(result.scalar() or 0))
