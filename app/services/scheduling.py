from datetime import date, datetime, time, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import (
    ConflictError,
    PermissionDeniedError,
    SchedulingError,
    StateError,
    StorageError,
    ValidationError,
)
from app.core.types import utcnow
from app.models.reservation import (
    SYSTEM_ACTOR,
    Reservation,
    ReservationStatus,
)
from app.models.reservation_service import ReservationService
from app.models.shop_hours import ShopHours
from app.schemas.auth import Identity
from app.schemas.events import AuditAction, AuditRecord, DomainEvent, EventType
from app.schemas.reservation import (
    OperationResult,
    ReservationRequest,
    ReservationStats,
    RevenueSummary,
)
from app.schemas.scheduling import AvailabilityResult, DayAvailability, TimeSlot
from app.services.availability import buffer_scan_window, validate_availability
from app.services.catalog import CatalogService
from app.services.events import EventPublisher
from app.services.reservation_store import SLOT_TAKEN_MESSAGE, ReservationStore
from app.utils.timezones import day_of_week, get_zone, local_to_utc, utc_to_local
from app.utils.validation import (
    validate_recipient_name,
    validate_service_combination,
    validate_service_ids,
)

logger = structlog.get_logger(__name__)

DEFAULT_CANCELLATION_REASON = "No reason provided"


class SchedulingService:
    """Reservation lifecycle: booking, cancellation, status changes,
    rescheduling and the passed-reservation sweep.

    Every mutating operation returns an :class:`OperationResult`. Failures are
    rolled back and reported with an ``error_type`` instead of being raised.
    """

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.tz = get_zone(self.settings.SHOP_TIMEZONE)
        self.catalog = CatalogService(db)
        self.store = ReservationStore(db)
        self.events = EventPublisher(db)

    # Booking

    async def create_reservation(
        self, user_id: str, request: ReservationRequest
    ) -> OperationResult:
        """Validate and persist a new pending reservation with its line items.

        Availability is checked against committed state first, then again
        after the barber row is locked, so a concurrent booking that commits
        in between is reported as a conflict rather than a validation error.
        """
        log = logger.bind(
            user_id=user_id,
            seat_id=request.seat_id,
            reserved_date=request.reserved_date.isoformat(),
            reserved_time=request.reserved_time.isoformat(),
        )
        try:
            recipient = validate_recipient_name(request.recipient_name)
            validate_service_ids(request.service_ids)
            services = await self.catalog.get_services(request.service_ids)
            base_service, addons = validate_service_combination(services)

            seat = await self.catalog.get_bookable_seat(request.seat_id)
            barber_id = seat.barber_id
            requested_at = local_to_utc(
                request.reserved_date, request.reserved_time, self.tz
            )
            shop_hours = await self._shop_hours_at(requested_at)

            result = await self._check_availability(barber_id, requested_at, shop_hours)
            if not result.valid:
                raise ValidationError(result.reason, self._conflict_details(result))

            await self.store.lock_barber(barber_id)
            result = await self._check_availability(barber_id, requested_at, shop_hours)
            if not result.valid:
                log.info(
                    "Slot taken while booking was in flight",
                    conflict_type=result.conflict_type.value,
                )
                raise ConflictError(SLOT_TAKEN_MESSAGE, self._conflict_details(result))

            line_items = [
                ReservationService(
                    service_id=base_service.id,
                    is_base_service=True,
                    service_name=base_service.name,
                    price=base_service.price,
                )
            ] + [
                ReservationService(
                    service_id=addon.id,
                    is_base_service=False,
                    service_name=addon.name,
                    price=addon.price,
                )
                for addon in addons
            ]
            total_price = sum((item.price for item in line_items), start=0)

            reservation = Reservation(
                user_id=user_id,
                service_recipient=recipient,
                seat_id=seat.id,
                barber_id=barber_id,
                reserved_datetime=requested_at,
                status=ReservationStatus.PENDING.value,
                total_price=total_price,
                is_rescheduled=False,
            )
            await self.store.insert_reservation(reservation, line_items)

            self.events.audit(
                AuditRecord(
                    actor_id=user_id,
                    action=AuditAction.RESERVATION_CREATED,
                    target_id=reservation.id,
                    details={
                        "service_recipient": recipient,
                        "seat_id": seat.id,
                        "barber_id": barber_id,
                        "reserved_datetime": requested_at.isoformat(),
                        "service_ids": [item.service_id for item in line_items],
                        "total_price": str(total_price),
                    },
                )
            )
            await self._commit()

            log.info(
                "Reservation created",
                reservation_id=reservation.id,
                total_price=str(total_price),
            )
            return OperationResult.ok(
                reservation.id,
                reserved_datetime=requested_at.isoformat(),
                total_price=str(total_price),
            )

        except SchedulingError as e:
            return await self._fail(e, log, "create_reservation")
        except SQLAlchemyError as e:
            log.error("Database error while creating reservation", exc_info=e)
            return await self._fail(
                StorageError("Failed to create reservation. Please try again."),
                log,
                "create_reservation",
            )

    # Cancellation

    async def cancel_reservation(
        self, reservation_id: int, actor: Identity, reason: Optional[str] = None
    ) -> OperationResult:
        """Cancel an active reservation. Owners and admins only."""
        log = logger.bind(reservation_id=reservation_id, actor_id=actor.user_id)
        try:
            await self._cancel(reservation_id, actor, reason)
            await self._commit()
            log.info("Reservation cancelled")
            return OperationResult.ok(reservation_id)

        except SchedulingError as e:
            return await self._fail(e, log, "cancel_reservation", reservation_id)
        except SQLAlchemyError as e:
            log.error("Database error while cancelling reservation", exc_info=e)
            return await self._fail(
                StorageError("Failed to cancel reservation. Please try again."),
                log,
                "cancel_reservation",
                reservation_id,
            )

    async def _cancel(
        self, reservation_id: int, actor: Identity, reason: Optional[str]
    ) -> Reservation:
        reservation = await self.store.get(reservation_id, for_update=True)
        is_owner = reservation.user_id == actor.user_id
        if not is_owner and not actor.is_admin:
            raise PermissionDeniedError(
                "You can only cancel your own reservations.",
                {"reservation_id": reservation_id},
            )
        if not reservation.is_active:
            raise StateError(
                f"Cannot cancel a reservation that is {reservation.status}.",
                {"reservation_id": reservation_id, "status": reservation.status},
            )

        reason = (reason or "").strip() or DEFAULT_CANCELLATION_REASON
        previous_status = reservation.status
        reservation.cancel(reason, actor.user_id, utcnow())
        await self.store.flush()

        if not is_owner:
            self.events.emit_event(
                DomainEvent(
                    type=EventType.RESERVATION_CANCELLED,
                    reservation_id=reservation.id,
                    user_id=reservation.user_id,
                    details={
                        "reason": reason,
                        "cancelled_by": actor.user_id,
                        "reserved_datetime": reservation.reserved_datetime.isoformat(),
                    },
                )
            )
        self.events.audit(
            AuditRecord(
                actor_id=actor.user_id,
                action=AuditAction.RESERVATION_CANCELLED,
                target_id=reservation.id,
                details={
                    "service_recipient": reservation.service_recipient,
                    "reason": reason,
                    "previous_status": previous_status,
                    "cancelled_by_role": "client" if is_owner else actor.role.value,
                },
            )
        )
        return reservation

    # Admin status management

    async def update_status(
        self, reservation_id: int, new_status: ReservationStatus, actor: Identity
    ) -> OperationResult:
        """Move a reservation through its lifecycle. Admin only.

        Cancelling goes through the cancellation path. An accepted reservation
        that was rescheduled only takes another reschedule or a cancellation.
        """
        log = logger.bind(
            reservation_id=reservation_id,
            actor_id=actor.user_id,
            new_status=new_status.value,
        )
        try:
            self._require_admin(actor, "update reservation status")

            if new_status == ReservationStatus.CANCELLED:
                await self._cancel(reservation_id, actor, None)
                await self._commit()
                log.info("Reservation cancelled via status update")
                return OperationResult.ok(
                    reservation_id, status=ReservationStatus.CANCELLED.value
                )

            reservation = await self.store.get(reservation_id, for_update=True)
            if reservation.is_terminal:
                raise StateError(
                    f"Reservation is already {reservation.status} and can no longer change.",
                    {"reservation_id": reservation_id, "status": reservation.status},
                )
            if not reservation.allows_generic_status_edit:
                raise StateError(
                    "Rescheduled reservations can only be rescheduled again or cancelled.",
                    {"reservation_id": reservation_id, "status": reservation.status},
                )

            old_status = reservation.status
            if not reservation.transition_to(new_status, utcnow()):
                raise StateError(
                    f"Cannot change status from {old_status} to {new_status.value}.",
                    {
                        "reservation_id": reservation_id,
                        "from_status": old_status,
                        "to_status": new_status.value,
                    },
                )
            await self.store.flush()

            if old_status != new_status.value:
                self.events.emit_event(
                    DomainEvent(
                        type=EventType.STATUS_CHANGED,
                        reservation_id=reservation.id,
                        user_id=reservation.user_id,
                        details={"from_status": old_status, "to_status": new_status.value},
                    )
                )
            self.events.audit(
                AuditRecord(
                    actor_id=actor.user_id,
                    action=AuditAction.STATUS_UPDATED,
                    target_id=reservation.id,
                    details={
                        "service_recipient": reservation.service_recipient,
                        "from_status": old_status,
                        "to_status": new_status.value,
                    },
                )
            )
            await self._commit()

            log.info("Reservation status updated", from_status=old_status)
            return OperationResult.ok(reservation_id, status=new_status.value)

        except SchedulingError as e:
            return await self._fail(e, log, "update_status", reservation_id)
        except SQLAlchemyError as e:
            log.error("Database error while updating status", exc_info=e)
            return await self._fail(
                StorageError("Failed to update reservation status. Please try again."),
                log,
                "update_status",
                reservation_id,
            )

    async def reschedule_reservation(
        self,
        reservation_id: int,
        new_date: date,
        new_time: time,
        actor: Identity,
    ) -> OperationResult:
        """Move an on-hold (or previously rescheduled) reservation. Admin only."""
        log = logger.bind(
            reservation_id=reservation_id,
            actor_id=actor.user_id,
            new_date=new_date.isoformat(),
            new_time=new_time.isoformat(),
        )
        try:
            self._require_admin(actor, "reschedule reservations")

            reservation = await self.store.get(reservation_id, for_update=True)
            if not reservation.is_reschedulable:
                raise StateError(
                    "Only on-hold or previously rescheduled reservations can be "
                    "rescheduled.",
                    {"reservation_id": reservation_id, "status": reservation.status},
                )

            new_at = local_to_utc(new_date, new_time, self.tz)
            shop_hours = await self._shop_hours_at(new_at)
            barber_id = reservation.barber_id

            result = await self._check_availability(
                barber_id, new_at, shop_hours, exclude_id=reservation.id
            )
            if not result.valid:
                raise ValidationError(result.reason, self._conflict_details(result))

            await self.store.lock_barber(barber_id)
            result = await self._check_availability(
                barber_id, new_at, shop_hours, exclude_id=reservation.id
            )
            if not result.valid:
                raise ConflictError(SLOT_TAKEN_MESSAGE, self._conflict_details(result))

            old_at = reservation.reserved_datetime
            reservation.reschedule(new_at, utcnow())
            await self.store.flush()

            self.events.emit_event(
                DomainEvent(
                    type=EventType.RESERVATION_RESCHEDULED,
                    reservation_id=reservation.id,
                    user_id=reservation.user_id,
                    details={
                        "old_datetime": old_at.isoformat(),
                        "new_datetime": new_at.isoformat(),
                    },
                )
            )
            self.events.audit(
                AuditRecord(
                    actor_id=actor.user_id,
                    action=AuditAction.RESERVATION_RESCHEDULED,
                    target_id=reservation.id,
                    details={
                        "service_recipient": reservation.service_recipient,
                        "old_datetime": old_at.isoformat(),
                        "new_datetime": new_at.isoformat(),
                    },
                )
            )
            await self._commit()

            log.info("Reservation rescheduled", old_datetime=old_at.isoformat())
            return OperationResult.ok(
                reservation_id,
                old_datetime=old_at.isoformat(),
                new_datetime=new_at.isoformat(),
            )

        except SchedulingError as e:
            return await self._fail(e, log, "reschedule_reservation", reservation_id)
        except SQLAlchemyError as e:
            log.error("Database error while rescheduling", exc_info=e)
            return await self._fail(
                StorageError("Failed to reschedule reservation. Please try again."),
                log,
                "reschedule_reservation",
                reservation_id,
            )

    # Expiry sweep

    async def expire_passed_reservations(self, now: Optional[datetime] = None) -> int:
        """Cancel accepted reservations whose start time has passed.

        Each reservation is cancelled in its own transaction with a conditional
        update, so re-running the sweep or racing a manual cancellation never
        cancels anything twice. Returns the number of reservations cancelled.
        """
        now = now or utcnow()
        reason = self.settings.EXPIRY_CANCELLATION_REASON

        try:
            candidates = await self.store.passed_accepted(now)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Expiry sweep could not load reservations", exc_info=e)
            raise StorageError("Expiry sweep could not load reservations.") from e

        cancelled = 0
        for reservation_id, user_id in candidates:
            try:
                if not await self.store.cancel_if_passed(reservation_id, now, reason):
                    await self.db.rollback()
                    continue

                self.events.emit_event(
                    DomainEvent(
                        type=EventType.RESERVATION_CANCELLED,
                        reservation_id=reservation_id,
                        user_id=user_id,
                        details={"reason": reason, "cancelled_by": SYSTEM_ACTOR},
                    )
                )
                self.events.audit(
                    AuditRecord(
                        actor_id=None,
                        action=AuditAction.RESERVATION_CANCELLED,
                        target_id=reservation_id,
                        details={
                            "reason": reason,
                            "cancelled_by": SYSTEM_ACTOR,
                            "auto_cancelled": True,
                        },
                    )
                )
                await self.db.commit()
                cancelled += 1
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    "Failed to expire reservation",
                    reservation_id=reservation_id,
                    exc_info=e,
                )

        logger.info(
            "Expiry sweep finished",
            candidates=len(candidates),
            cancelled=cancelled,
            now=now.isoformat(),
        )
        return cancelled

    # Read side

    async def get_available_time_slots(
        self,
        day: date,
        seat_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> DayAvailability:
        """List bookable start times on ``day`` and which seats can take them.

        Slots step by ``SLOT_INTERVAL_MINUTES`` from opening time and stop when
        the assumed service duration no longer fits before closing. Slots that
        already started and slots with no free seat are left out.
        """
        now = now or utcnow()
        shop_hours = await self.catalog.find_shop_hours(day_of_week(day))
        if (
            shop_hours is None
            or not shop_hours.is_open
            or shop_hours.open_time is None
            or shop_hours.close_time is None
        ):
            return DayAvailability(date=day.isoformat(), is_open=False)

        if seat_id is not None:
            seats = [await self.catalog.get_bookable_seat(seat_id)]
        else:
            seats = [s for s in await self.catalog.get_seats_with_barbers() if s.is_bookable]

        # Wide enough for either scan mode around any slot of the day
        range_start = local_to_utc(day, time.min, self.tz) - timedelta(days=1)
        range_end = local_to_utc(day, time.max, self.tz) + timedelta(days=1)
        booked = {}
        for seat in seats:
            if seat.barber_id not in booked:
                booked[seat.barber_id] = await self.store.active_reservations_for_barber(
                    seat.barber_id, range_start, range_end
                )

        interval = timedelta(minutes=self.settings.SLOT_INTERVAL_MINUTES)
        duration = timedelta(minutes=self.settings.ASSUMED_SERVICE_DURATION_MINUTES)
        slots = []
        local_start = datetime.combine(day, shop_hours.open_time)
        while True:
            local_end = local_start + duration
            if local_end.date() != day or local_end.time() > shop_hours.close_time:
                break

            requested_at = local_to_utc(day, local_start.time(), self.tz)
            if requested_at > now:
                seat_ids = [
                    seat.id
                    for seat in seats
                    if validate_availability(
                        requested_at,
                        booked[seat.barber_id],
                        shop_hours,
                        buffer_minutes=self.settings.BUFFER_MINUTES,
                        assumed_duration_minutes=self.settings.ASSUMED_SERVICE_DURATION_MINUTES,
                        scan_mode=self.settings.BUFFER_SCAN_MODE,
                        tz=self.tz,
                    ).valid
                ]
                if seat_ids:
                    slots.append(
                        TimeSlot(
                            start_time=local_start.time(),
                            reserved_datetime=requested_at,
                            available_seat_ids=seat_ids,
                            available_seats=len(seat_ids),
                        )
                    )
            local_start += interval

        return DayAvailability(date=day.isoformat(), is_open=True, slots=slots)

    async def get_reservation(self, reservation_id: int, actor: Identity) -> Reservation:
        reservation = await self.store.get(reservation_id)
        if reservation.user_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError(
                "You can only view your own reservations.",
                {"reservation_id": reservation_id},
            )
        return reservation

    async def list_user_reservations(
        self,
        user_id: str,
        statuses: Optional[Sequence[ReservationStatus]] = None,
    ) -> list[Reservation]:
        return await self.store.list_for_user(user_id, statuses)

    async def get_reservation_stats(
        self, now: Optional[datetime] = None
    ) -> ReservationStats:
        """Status counts plus completed revenue for today, this week and this month.

        Periods are shop-local; weeks start on Sunday.
        """
        now = now or utcnow()
        today = utc_to_local(now, self.tz).date()
        week_start = today - timedelta(days=day_of_week(today))
        month_start = today.replace(day=1)

        counts = await self.store.status_counts()
        revenue = RevenueSummary(
            today=await self.store.completed_revenue_since(
                local_to_utc(today, time.min, self.tz)
            ),
            this_week=await self.store.completed_revenue_since(
                local_to_utc(week_start, time.min, self.tz)
            ),
            this_month=await self.store.completed_revenue_since(
                local_to_utc(month_start, time.min, self.tz)
            ),
        )
        return ReservationStats(counts=counts, revenue=revenue, generated_at=now)

    # Helpers

    async def _shop_hours_at(self, instant: datetime) -> Optional[ShopHours]:
        local_day = utc_to_local(instant, self.tz).date()
        return await self.catalog.find_shop_hours(day_of_week(local_day))

    async def _check_availability(
        self,
        barber_id: int,
        requested_at: datetime,
        shop_hours: Optional[ShopHours],
        exclude_id: Optional[int] = None,
    ) -> AvailabilityResult:
        start, end = buffer_scan_window(
            requested_at,
            self.settings.BUFFER_SCAN_MODE,
            self.settings.BUFFER_MINUTES,
            self.settings.MAX_SERVICE_DURATION_MINUTES,
        )
        # Exact-slot matches always fall inside either window
        reservations = await self.store.active_reservations_for_barber(
            barber_id, start, end, exclude_id=exclude_id
        )
        return validate_availability(
            requested_at,
            reservations,
            shop_hours,
            buffer_minutes=self.settings.BUFFER_MINUTES,
            assumed_duration_minutes=self.settings.ASSUMED_SERVICE_DURATION_MINUTES,
            scan_mode=self.settings.BUFFER_SCAN_MODE,
            tz=self.tz,
        )

    @staticmethod
    def _conflict_details(result: AvailabilityResult) -> dict:
        return {"conflict_type": result.conflict_type.value, **result.details}

    @staticmethod
    def _require_admin(actor: Identity, action: str) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError(
                f"Only admins can {action}.", {"actor_id": actor.user_id}
            )

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            raise ConflictError(
                SLOT_TAKEN_MESSAGE, {"constraint": "uq_reservations_barber_slot_active"}
            ) from e

    async def _fail(
        self,
        error: SchedulingError,
        log,
        operation: str,
        reservation_id: Optional[int] = None,
    ) -> OperationResult:
        await self.db.rollback()
        if isinstance(error, StorageError):
            log.error(f"{operation} failed", error=error.message)
        else:
            log.warning(
                f"{operation} rejected",
                error_type=error.error_type,
                error=error.message,
            )
        return OperationResult.failure(error, reservation_id)
