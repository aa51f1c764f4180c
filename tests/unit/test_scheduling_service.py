"""Test the scheduling service with real database interactions."""

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import session_factory
from app.models.admin_log import AdminLog
from app.models.notification import Notification
from app.models.reservation import Reservation, ReservationStatus
from app.models.reservation_service import ReservationService
from app.models.service import Service
from app.schemas.auth import Identity, Role
from app.schemas.reservation import ReservationRequest
from app.schemas.scheduling import AvailabilityResult, ConflictType
from app.services.reservation_store import ReservationStore
from app.services.scheduling import SchedulingService
from tests.conftest import TEST_DATABASE_URL

UTC = timezone.utc
WEDNESDAY = date(2024, 1, 10)
MONDAY = date(2024, 1, 8)
SUNDAY = date(2024, 1, 7)

CLIENT = Identity(user_id="client-1")
OTHER_CLIENT = Identity(user_id="client-2")
ADMIN = Identity(user_id="admin-1", role=Role.ADMIN)


def booking(shop, at=time(10, 0), day=WEDNESDAY, service_ids=None, seat_id=None):
    return ReservationRequest(
        recipient_name="Juan Dela Cruz",
        service_ids=service_ids or [shop.services.haircut],
        seat_id=seat_id or shop.seats.seat_1,
        reserved_date=day,
        reserved_time=at,
    )


async def reload(db: AsyncSession, reservation_id: int) -> Reservation:
    result = await db.execute(
        select(Reservation)
        .options(selectinload(Reservation.line_items))
        .where(Reservation.id == reservation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def count(db: AsyncSession, model, *criteria) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar_one()


@pytest.fixture
def service(db: AsyncSession, shop_settings) -> SchedulingService:
    return SchedulingService(db, shop_settings)


@pytest.fixture
async def booked(service, shop) -> int:
    """A pending reservation on seat 1 at Wednesday 10:00."""
    result = await service.create_reservation(CLIENT.user_id, booking(shop))
    assert result.success, result.error
    return result.reservation_id


@pytest.fixture
async def on_hold(service, booked) -> int:
    result = await service.update_status(booked, ReservationStatus.ON_HOLD, ADMIN)
    assert result.success, result.error
    return booked


class TestCreateReservation:
    @pytest.mark.asyncio
    async def test_create_with_addons(self, db, service, shop):
        request = booking(
            shop,
            service_ids=[
                shop.services.hair_wash,
                shop.services.haircut,
                shop.services.beard_trim,
            ],
        )

        result = await service.create_reservation(CLIENT.user_id, request)

        assert result.success
        reservation = await reload(db, result.reservation_id)
        assert reservation.status == ReservationStatus.PENDING.value
        assert reservation.user_id == CLIENT.user_id
        assert reservation.barber_id == shop.seats.barber_1
        assert reservation.reserved_datetime == datetime(2024, 1, 10, 10, 0, tzinfo=UTC)
        assert reservation.total_price == Decimal("280.00")
        assert len(reservation.line_items) == 3
        assert [i.is_base_service for i in reservation.line_items].count(True) == 1
        assert reservation.base_line_item.service_name == "Haircut"

    @pytest.mark.asyncio
    async def test_line_item_prices_are_snapshotted(self, db, service, shop, booked):
        haircut = await db.get(Service, shop.services.haircut)
        haircut.price = Decimal("999.00")
        await db.commit()

        reservation = await reload(db, booked)

        assert reservation.base_line_item.price == Decimal("150.00")
        assert reservation.total_price == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_creation_is_audited(self, db, booked):
        assert (
            await count(
                db,
                AdminLog,
                AdminLog.action == "reservation_created",
                AdminLog.target_id == booked,
                AdminLog.actor_id == CLIENT.user_id,
            )
            == 1
        )

    @pytest.mark.asyncio
    async def test_buffer_conflict_and_boundary(self, service, shop, booked):
        too_close = await service.create_reservation(
            OTHER_CLIENT.user_id, booking(shop, at=time(10, 30))
        )
        boundary = await service.create_reservation(
            OTHER_CLIENT.user_id, booking(shop, at=time(11, 30))
        )

        assert not too_close.success
        assert too_close.error_type == "validation"
        assert too_close.details["conflict_type"] == ConflictType.INSUFFICIENT_BUFFER.value
        assert too_close.details["conflicting_reservation_id"] == booked
        assert boundary.success

    @pytest.mark.asyncio
    async def test_exact_slot_taken(self, service, shop, booked):
        result = await service.create_reservation(OTHER_CLIENT.user_id, booking(shop))

        assert result.error_type == "validation"
        assert result.details["conflict_type"] == ConflictType.EXACT_SLOT.value

    @pytest.mark.asyncio
    async def test_other_barber_is_independent(self, service, shop, booked):
        result = await service.create_reservation(
            OTHER_CLIENT.user_id, booking(shop, seat_id=shop.seats.seat_2)
        )

        assert result.success

    @pytest.mark.asyncio
    async def test_closing_time(self, service, shop):
        late = await service.create_reservation(
            CLIENT.user_id, booking(shop, day=MONDAY, at=time(17, 0))
        )
        in_time = await service.create_reservation(
            CLIENT.user_id, booking(shop, day=MONDAY, at=time(16, 0))
        )

        assert late.error_type == "validation"
        assert late.details["conflict_type"] == ConflictType.AFTER_CLOSING.value
        assert in_time.success

    @pytest.mark.asyncio
    async def test_closed_day(self, service, shop):
        result = await service.create_reservation(
            CLIENT.user_id, booking(shop, day=SUNDAY)
        )

        assert result.details["conflict_type"] == ConflictType.SHOP_CLOSED.value

    @pytest.mark.asyncio
    async def test_bossing_with_addon_writes_nothing(self, db, service, shop):
        request = booking(
            shop, service_ids=[shop.services.bossing, shop.services.beard_trim]
        )

        result = await service.create_reservation(CLIENT.user_id, request)

        assert result.error_type == "validation"
        assert "cannot be combined with add-ons" in result.error
        assert await count(db, Reservation) == 0
        assert await count(db, ReservationService) == 0

    @pytest.mark.asyncio
    async def test_unknown_service(self, service, shop):
        result = await service.create_reservation(
            CLIENT.user_id, booking(shop, service_ids=[shop.services.haircut, 9999])
        )

        assert result.error_type == "not_found"

    @pytest.mark.asyncio
    async def test_blank_recipient(self, service, shop):
        request = booking(shop).model_copy(update={"recipient_name": "   "})

        result = await service.create_reservation(CLIENT.user_id, request)

        assert result.error_type == "validation"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seat_key", ["empty_seat", "closed_seat"])
    async def test_unbookable_seat(self, service, shop, seat_key):
        result = await service.create_reservation(
            CLIENT.user_id, booking(shop, seat_id=getattr(shop.seats, seat_key))
        )

        assert result.error_type == "validation"

    @pytest.mark.asyncio
    async def test_local_time_is_stored_as_utc(self, db, shop):
        manila_service = SchedulingService(db)

        result = await manila_service.create_reservation(
            CLIENT.user_id, booking(shop, at=time(9, 0))
        )

        assert result.success
        reservation = await reload(db, result.reservation_id)
        assert reservation.reserved_datetime == datetime(2024, 1, 10, 1, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_time_with_utc_offset_keeps_its_instant(self, db, shop):
        manila_service = SchedulingService(db)

        # 02:00Z is 10:00 in Manila
        result = await manila_service.create_reservation(
            CLIENT.user_id, booking(shop, at=time(2, 0, tzinfo=UTC))
        )

        assert result.success, result.error
        reservation = await reload(db, result.reservation_id)
        assert reservation.reserved_datetime == datetime(2024, 1, 10, 2, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_shop_hours_follow_the_local_day_of_the_instant(self, db, shop):
        manila_service = SchedulingService(db)
        saturday = date(2024, 1, 6)

        # 20:00Z on Saturday is 04:00 Sunday in Manila, when the shop is closed
        result = await manila_service.create_reservation(
            CLIENT.user_id, booking(shop, day=saturday, at=time(20, 0, tzinfo=UTC))
        )

        assert result.error_type == "validation"
        assert result.details["conflict_type"] == ConflictType.SHOP_CLOSED.value


class TestConcurrentBooking:
    @pytest.mark.asyncio
    async def test_slot_taken_after_prevalidation_is_a_conflict(self, db, service, shop):
        checks = [
            AvailabilityResult.ok(),
            AvailabilityResult.reject(ConflictType.EXACT_SLOT, "Already booked"),
        ]

        with patch(
            "app.services.scheduling.validate_availability", side_effect=checks
        ):
            result = await service.create_reservation(CLIENT.user_id, booking(shop))

        assert result.error_type == "conflict"
        assert result.error == "This time slot was just booked by another customer."
        assert await count(db, Reservation) == 0

    @pytest.mark.asyncio
    async def test_unique_index_violation_is_a_conflict(self, db, service, shop, booked):
        with patch.object(
            SchedulingService,
            "_check_availability",
            AsyncMock(return_value=AvailabilityResult.ok()),
        ):
            result = await service.create_reservation(
                OTHER_CLIENT.user_id,
                booking(shop, service_ids=[shop.services.haircut, shop.services.hair_wash]),
            )

        assert result.error_type == "conflict"
        assert await count(db, Reservation) == 1
        # No line items from the failed attempt survive
        assert await count(db, ReservationService) == 1

    @pytest.mark.asyncio
    @pytest.mark.skipif(
        TEST_DATABASE_URL.startswith("sqlite"),
        reason="row locks need a server database",
    )
    async def test_parallel_requests_for_same_slot(self, db_engine, shop, shop_settings):
        sessions = session_factory(db_engine)
        lock_barber = ReservationStore.lock_barber
        waiting = []
        both_checked = asyncio.Event()

        # Hold each request at the barber lock until both have passed the first check.
        async def lock_after_both_checked(store, barber_id):
            waiting.append(barber_id)
            if len(waiting) == 2:
                both_checked.set()
            await asyncio.wait_for(both_checked.wait(), timeout=5)
            return await lock_barber(store, barber_id)

        async def attempt(user_id: str):
            async with sessions() as session:
                return await SchedulingService(session, shop_settings).create_reservation(
                    user_id, booking(shop)
                )

        with patch.object(ReservationStore, "lock_barber", new=lock_after_both_checked):
            results = await asyncio.gather(attempt("client-1"), attempt("client-2"))

        assert sum(r.success for r in results) == 1
        loser = next(r for r in results if not r.success)
        assert loser.error_type == "conflict"
        assert loser.details["conflict_type"] == ConflictType.EXACT_SLOT.value

        async with sessions() as session:
            assert await count(session, Reservation) == 1


class TestCancelReservation:
    @pytest.mark.asyncio
    async def test_owner_cancels(self, db, service, booked):
        result = await service.cancel_reservation(booked, CLIENT)

        assert result.success
        reservation = await reload(db, booked)
        assert reservation.status == ReservationStatus.CANCELLED.value
        assert reservation.previous_status == ReservationStatus.PENDING.value
        assert reservation.cancellation_reason == "No reason provided"
        assert reservation.cancelled_by == CLIENT.user_id
        assert reservation.cancelled_at is not None
        assert await count(db, Notification) == 0
        assert await count(db, AdminLog, AdminLog.action == "reservation_cancelled") == 1

    @pytest.mark.asyncio
    async def test_admin_cancel_notifies_owner(self, db, service, booked):
        result = await service.cancel_reservation(booked, ADMIN, "  Barber is sick  ")

        assert result.success
        reservation = await reload(db, booked)
        assert reservation.cancellation_reason == "Barber is sick"
        assert reservation.cancelled_by == ADMIN.user_id

        notifications = (await db.execute(select(Notification))).scalars().all()
        assert len(notifications) == 1
        assert notifications[0].type == "reservation_cancelled"
        assert notifications[0].user_id == CLIENT.user_id

    @pytest.mark.asyncio
    async def test_other_client_cannot_cancel(self, db, service, booked):
        result = await service.cancel_reservation(booked, OTHER_CLIENT)

        assert result.error_type == "forbidden"
        assert (await reload(db, booked)).status == ReservationStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_cancelled_reservation_cannot_be_cancelled_again(self, service, booked):
        await service.cancel_reservation(booked, CLIENT)

        result = await service.cancel_reservation(booked, ADMIN)

        assert result.error_type == "state"

    @pytest.mark.asyncio
    async def test_missing_reservation(self, service, shop):
        result = await service.cancel_reservation(12345, ADMIN)

        assert result.error_type == "not_found"

    @pytest.mark.asyncio
    async def test_cancelling_frees_the_slot(self, service, shop, booked):
        await service.cancel_reservation(booked, CLIENT)

        result = await service.create_reservation(OTHER_CLIENT.user_id, booking(shop))

        assert result.success


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_admin_accepts(self, db, service, booked):
        result = await service.update_status(booked, ReservationStatus.ACCEPTED, ADMIN)

        assert result.success
        reservation = await reload(db, booked)
        assert reservation.status == ReservationStatus.ACCEPTED.value
        notification = (await db.execute(select(Notification))).scalar_one()
        assert notification.type == "status_changed"
        assert notification.details == {"from_status": "pending", "to_status": "accepted"}

    @pytest.mark.asyncio
    async def test_client_cannot_change_status(self, service, booked):
        result = await service.update_status(booked, ReservationStatus.ACCEPTED, CLIENT)

        assert result.error_type == "forbidden"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, service, booked):
        result = await service.update_status(booked, ReservationStatus.COMPLETED, ADMIN)

        assert result.error_type == "state"

    @pytest.mark.asyncio
    async def test_completed_reservation_is_final(self, db, service, booked):
        await service.update_status(booked, ReservationStatus.ACCEPTED, ADMIN)
        await service.update_status(booked, ReservationStatus.COMPLETED, ADMIN)

        reservation = await reload(db, booked)
        assert reservation.completed_at is not None

        for new_status in ReservationStatus:
            result = await service.update_status(booked, new_status, ADMIN)
            assert result.error_type == "state"
        assert (await reload(db, booked)).status == ReservationStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_cancel_through_status_update(self, db, service, booked):
        result = await service.update_status(booked, ReservationStatus.CANCELLED, ADMIN)

        assert result.success
        reservation = await reload(db, booked)
        assert reservation.status == ReservationStatus.CANCELLED.value
        assert reservation.cancelled_by == ADMIN.user_id

    @pytest.mark.asyncio
    async def test_rescheduled_reservation_refuses_generic_edits(self, service, on_hold):
        await service.reschedule_reservation(on_hold, WEDNESDAY, time(13, 0), ADMIN)

        result = await service.update_status(on_hold, ReservationStatus.ONGOING, ADMIN)

        assert result.error_type == "state"
        assert "rescheduled" in result.error


class TestRescheduleReservation:
    @pytest.mark.asyncio
    async def test_reschedule_on_hold(self, db, service, on_hold):
        result = await service.reschedule_reservation(
            on_hold, WEDNESDAY, time(14, 0), ADMIN
        )

        assert result.success
        reservation = await reload(db, on_hold)
        assert reservation.status == ReservationStatus.ACCEPTED.value
        assert reservation.is_rescheduled
        assert reservation.reserved_datetime == datetime(2024, 1, 10, 14, 0, tzinfo=UTC)
        assert reservation.rescheduled_from_datetime == datetime(
            2024, 1, 10, 10, 0, tzinfo=UTC
        )
        types = (await db.execute(select(Notification.type))).scalars().all()
        assert "reservation_rescheduled" in types

    @pytest.mark.asyncio
    async def test_reservation_does_not_conflict_with_itself(self, service, on_hold):
        result = await service.reschedule_reservation(
            on_hold, WEDNESDAY, time(11, 0), ADMIN
        )

        assert result.success

    @pytest.mark.asyncio
    async def test_rescheduled_reservation_can_move_again(self, service, on_hold):
        await service.reschedule_reservation(on_hold, WEDNESDAY, time(13, 0), ADMIN)

        result = await service.reschedule_reservation(
            on_hold, MONDAY, time(9, 0), ADMIN
        )

        assert result.success

    @pytest.mark.asyncio
    async def test_pending_reservation_cannot_be_rescheduled(self, service, booked):
        result = await service.reschedule_reservation(
            booked, WEDNESDAY, time(14, 0), ADMIN
        )

        assert result.error_type == "state"

    @pytest.mark.asyncio
    async def test_new_slot_is_validated(self, db, service, shop, on_hold):
        other = await service.create_reservation(
            OTHER_CLIENT.user_id, booking(shop, at=time(15, 0))
        )
        assert other.success

        result = await service.reschedule_reservation(
            on_hold, WEDNESDAY, time(14, 0), ADMIN
        )

        assert result.error_type == "validation"
        assert result.details["conflict_type"] == ConflictType.INSUFFICIENT_BUFFER.value
        assert (await reload(db, on_hold)).status == ReservationStatus.ON_HOLD.value

    @pytest.mark.asyncio
    async def test_client_cannot_reschedule(self, service, on_hold):
        result = await service.reschedule_reservation(
            on_hold, WEDNESDAY, time(14, 0), CLIENT
        )

        assert result.error_type == "forbidden"


class TestExpirySweep:
    @pytest.fixture
    async def accepted(self, service, booked) -> int:
        result = await service.update_status(booked, ReservationStatus.ACCEPTED, ADMIN)
        assert result.success
        return booked

    @pytest.mark.asyncio
    async def test_passed_reservation_is_cancelled(self, db, service, accepted):
        now = datetime(2024, 1, 10, 10, 10, tzinfo=UTC)

        cancelled = await service.expire_passed_reservations(now)

        assert cancelled == 1
        reservation = await reload(db, accepted)
        assert reservation.status == ReservationStatus.CANCELLED.value
        assert reservation.cancelled_by == "system"
        assert reservation.cancellation_reason == "time passed"
        assert reservation.cancelled_at == now

        log = (
            await db.execute(
                select(AdminLog).where(AdminLog.action == "reservation_cancelled")
            )
        ).scalar_one()
        assert log.actor_id is None
        assert log.details["auto_cancelled"] is True

    @pytest.mark.asyncio
    async def test_second_run_cancels_nothing(self, db, service, accepted):
        now = datetime(2024, 1, 10, 10, 10, tzinfo=UTC)

        assert await service.expire_passed_reservations(now) == 1
        assert await service.expire_passed_reservations(now) == 0
        assert await count(db, AdminLog, AdminLog.action == "reservation_cancelled") == 1

    @pytest.mark.asyncio
    async def test_only_passed_accepted_reservations_expire(self, db, service, shop, accepted):
        pending = await service.create_reservation(
            OTHER_CLIENT.user_id, booking(shop, seat_id=shop.seats.seat_2)
        )
        upcoming = await service.create_reservation(
            OTHER_CLIENT.user_id, booking(shop, at=time(15, 0))
        )
        await service.update_status(upcoming.reservation_id, ReservationStatus.ACCEPTED, ADMIN)

        cancelled = await service.expire_passed_reservations(
            datetime(2024, 1, 10, 10, 10, tzinfo=UTC)
        )

        assert cancelled == 1
        assert (await reload(db, pending.reservation_id)).status == "pending"
        assert (await reload(db, upcoming.reservation_id)).status == "accepted"

    @pytest.mark.asyncio
    async def test_reservation_cancelled_in_between_is_skipped(self, service, accepted):
        now = datetime(2024, 1, 10, 10, 10, tzinfo=UTC)

        assert await service.store.cancel_if_passed(accepted, now, "time passed")
        assert not await service.store.cancel_if_passed(accepted, now, "time passed")

    @pytest.mark.asyncio
    async def test_failing_reservation_does_not_stop_the_sweep(
        self, db, service, shop, accepted
    ):
        other = await service.create_reservation(
            OTHER_CLIENT.user_id, booking(shop, seat_id=shop.seats.seat_2)
        )
        await service.update_status(other.reservation_id, ReservationStatus.ACCEPTED, ADMIN)
        cancel_if_passed = service.store.cancel_if_passed

        async def failing_for_first(reservation_id, now, reason):
            if reservation_id == accepted:
                raise OperationalError("UPDATE reservations", {}, Exception("deadlock"))
            return await cancel_if_passed(reservation_id, now, reason)

        with patch.object(service.store, "cancel_if_passed", side_effect=failing_for_first):
            cancelled = await service.expire_passed_reservations(
                datetime(2024, 1, 10, 10, 10, tzinfo=UTC)
            )

        assert cancelled == 1
        assert (await reload(db, accepted)).status == "accepted"
        assert (await reload(db, other.reservation_id)).status == "cancelled"


class TestAvailableTimeSlots:
    NOW = datetime(2024, 1, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_open_day_slots(self, service, shop):
        day = await service.get_available_time_slots(WEDNESDAY, now=self.NOW)

        assert day.is_open
        assert [s.start_time for s in day.slots] == [
            time(9, 0),
            time(10, 30),
            time(12, 0),
            time(13, 30),
            time(15, 0),
            time(16, 30),
        ]
        assert all(
            s.available_seat_ids == [shop.seats.seat_1, shop.seats.seat_2]
            for s in day.slots
        )

    @pytest.mark.asyncio
    async def test_booked_barber_drops_out_of_nearby_slots(self, service, shop):
        await service.create_reservation(CLIENT.user_id, booking(shop, at=time(10, 30)))

        day = await service.get_available_time_slots(WEDNESDAY, now=self.NOW)

        by_time = {s.start_time: s for s in day.slots}
        assert by_time[time(10, 30)].available_seat_ids == [shop.seats.seat_2]
        assert by_time[time(9, 0)].available_seats == 2
        assert by_time[time(12, 0)].available_seats == 2

    @pytest.mark.asyncio
    async def test_single_seat(self, service, shop):
        day = await service.get_available_time_slots(
            WEDNESDAY, seat_id=shop.seats.seat_2, now=self.NOW
        )

        assert all(s.available_seat_ids == [shop.seats.seat_2] for s in day.slots)

    @pytest.mark.asyncio
    async def test_closed_day(self, service, shop):
        day = await service.get_available_time_slots(SUNDAY, now=self.NOW)

        assert not day.is_open
        assert day.slots == []

    @pytest.mark.asyncio
    async def test_started_slots_are_left_out(self, service, shop):
        day = await service.get_available_time_slots(
            WEDNESDAY, now=datetime(2024, 1, 10, 11, 0, tzinfo=UTC)
        )

        assert day.slots[0].start_time == time(12, 0)


class TestReservationStats:
    @pytest.mark.asyncio
    async def test_counts_and_revenue(self, service, shop, booked):
        await service.create_reservation(
            OTHER_CLIENT.user_id, booking(shop, seat_id=shop.seats.seat_2)
        )
        await service.update_status(booked, ReservationStatus.ACCEPTED, ADMIN)
        await service.update_status(booked, ReservationStatus.COMPLETED, ADMIN)

        stats = await service.get_reservation_stats()

        assert stats.counts["completed"] == 1
        assert stats.counts["pending"] == 1
        assert stats.counts["cancelled"] == 0
        assert stats.revenue.today == Decimal("150.00")
        assert stats.revenue.this_week == Decimal("150.00")
        assert stats.revenue.this_month == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_old_revenue_is_excluded(self, service, booked):
        await service.update_status(booked, ReservationStatus.ACCEPTED, ADMIN)
        await service.update_status(booked, ReservationStatus.COMPLETED, ADMIN)

        stats = await service.get_reservation_stats(
            datetime.now(UTC) + timedelta(days=40)
        )

        assert stats.revenue.this_month == Decimal("0")
