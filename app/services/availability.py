"""Booking availability rules for a single barber.

Everything in this module is a pure function of the requested instant, the
barber's active reservations and the shop hours for the requested day. The
scheduling service runs :func:`validate_availability` once against committed
state and again inside the insert transaction.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence

from app.core.config import settings
from app.models.shop_hours import ShopHours
from app.schemas.scheduling import AvailabilityResult, ConflictType
from app.utils.timezones import (
    TzLike,
    format_local_time,
    format_wall_time,
    utc_to_local,
)

logger = logging.getLogger(__name__)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def buffer_scan_window(
    requested_at: datetime,
    mode: Optional[str] = None,
    buffer_minutes: Optional[int] = None,
    max_duration_minutes: Optional[int] = None,
) -> tuple[datetime, datetime]:
    """Return the inclusive UTC range of reservations the buffer check considers.

    ``utc_day`` covers the UTC calendar day of the requested instant.
    ``sliding`` covers ``requested ± (buffer + max service duration)`` and also
    catches neighbours on the other side of UTC midnight.
    """
    requested_at = _as_utc(requested_at)
    mode = mode or settings.BUFFER_SCAN_MODE

    if mode == "sliding":
        buffer_minutes = buffer_minutes or settings.BUFFER_MINUTES
        max_duration_minutes = (
            max_duration_minutes or settings.MAX_SERVICE_DURATION_MINUTES
        )
        span = timedelta(minutes=buffer_minutes + max_duration_minutes)
        return requested_at - span, requested_at + span

    if mode != "utc_day":
        raise ValueError(f"Unknown buffer scan mode: {mode}")

    day_start = requested_at.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1) - timedelta(microseconds=1)
    return day_start, day_end


def check_exact_slot(
    requested_at: datetime, reservations: Iterable
) -> AvailabilityResult:
    """Reject when an active reservation already starts at the same instant."""
    requested_at = _as_utc(requested_at)

    for reservation in reservations:
        if _as_utc(reservation.reserved_datetime) == requested_at:
            logger.debug(
                f"Exact slot conflict with reservation {reservation.id} "
                f"at {requested_at.isoformat()}"
            )
            return AvailabilityResult.reject(
                ConflictType.EXACT_SLOT,
                "This time slot is already booked by another client. "
                "Please select a different time.",
                conflicting_reservation_id=reservation.id,
                conflicting_at=requested_at.isoformat(),
            )

    return AvailabilityResult.ok()


def check_buffer(
    requested_at: datetime,
    reservations: Iterable,
    buffer_minutes: Optional[int] = None,
    scan_mode: Optional[str] = None,
    tz: Optional[TzLike] = None,
) -> AvailabilityResult:
    """Require ``buffer_minutes`` between the requested start and every other start."""
    requested_at = _as_utc(requested_at)
    buffer_minutes = buffer_minutes or settings.BUFFER_MINUTES
    window_start, window_end = buffer_scan_window(
        requested_at, scan_mode, buffer_minutes
    )

    candidates = sorted(
        (
            r
            for r in reservations
            if window_start <= _as_utc(r.reserved_datetime) <= window_end
        ),
        key=lambda r: _as_utc(r.reserved_datetime),
    )
    logger.debug(
        f"Buffer check at {requested_at.isoformat()}: {len(candidates)} candidates "
        f"between {window_start.isoformat()} and {window_end.isoformat()}"
    )

    for reservation in candidates:
        existing_at = _as_utc(reservation.reserved_datetime)
        gap_minutes = abs((requested_at - existing_at).total_seconds()) / 60

        if 0 < gap_minutes < buffer_minutes:
            earliest_after = existing_at + timedelta(minutes=buffer_minutes)
            latest_before = existing_at - timedelta(minutes=buffer_minutes)
            logger.debug(
                f"Buffer violation with reservation {reservation.id}: "
                f"gap {gap_minutes:.2f} min, required {buffer_minutes} min"
            )
            return AvailabilityResult.reject(
                ConflictType.INSUFFICIENT_BUFFER,
                f"This barber has a booking at {format_local_time(existing_at, tz)}. "
                f"You need at least {buffer_minutes} minutes between appointments. "
                f"Available times: {format_local_time(earliest_after, tz)} or later, "
                f"{format_local_time(latest_before, tz)} or earlier.",
                conflicting_reservation_id=reservation.id,
                conflicting_at=existing_at.isoformat(),
                gap_minutes=round(gap_minutes, 2),
                required_minutes=buffer_minutes,
                earliest_after=earliest_after.isoformat(),
                latest_before=latest_before.isoformat(),
            )

        if gap_minutes == 0:
            return AvailabilityResult.reject(
                ConflictType.EXACT_SLOT,
                "This exact time is already booked.",
                conflicting_reservation_id=reservation.id,
                conflicting_at=existing_at.isoformat(),
            )

    return AvailabilityResult.ok()


def check_shop_hours(
    requested_at: datetime,
    shop_hours: Optional[ShopHours],
    tz: Optional[TzLike] = None,
    assumed_duration_minutes: Optional[int] = None,
) -> AvailabilityResult:
    """Check the requested start and the assumed service end against shop hours.

    The end is always ``start + assumed_duration_minutes`` regardless of the
    services actually booked.
    """
    assumed_duration_minutes = (
        assumed_duration_minutes or settings.ASSUMED_SERVICE_DURATION_MINUTES
    )
    local_start = utc_to_local(_as_utc(requested_at), tz)

    if (
        shop_hours is None
        or not shop_hours.is_open
        or shop_hours.open_time is None
        or shop_hours.close_time is None
    ):
        return AvailabilityResult.reject(
            ConflictType.SHOP_CLOSED,
            "The shop is closed on this day. Please select a different date.",
            local_date=local_start.date().isoformat(),
        )

    if local_start.time() < shop_hours.open_time:
        return AvailabilityResult.reject(
            ConflictType.BEFORE_OPENING,
            f"The shop opens at {format_wall_time(shop_hours.open_time)}. "
            "Please select a later time.",
            open_time=shop_hours.open_time.isoformat(),
        )

    local_end = local_start + timedelta(minutes=assumed_duration_minutes)
    if (
        local_end.date() != local_start.date()
        or local_end.time() > shop_hours.close_time
    ):
        return AvailabilityResult.reject(
            ConflictType.AFTER_CLOSING,
            "This reservation would exceed closing time "
            f"({format_wall_time(shop_hours.close_time)}). Please book earlier.",
            close_time=shop_hours.close_time.isoformat(),
            service_end=local_end.time().isoformat(),
        )

    return AvailabilityResult.ok()


def validate_availability(
    requested_at: datetime,
    reservations: Sequence,
    shop_hours: Optional[ShopHours],
    buffer_minutes: Optional[int] = None,
    assumed_duration_minutes: Optional[int] = None,
    scan_mode: Optional[str] = None,
    tz: Optional[TzLike] = None,
) -> AvailabilityResult:
    """Run exact-slot, buffer and shop-hours checks, stopping at the first failure.

    ``reservations`` are the barber's active reservations; each item needs
    ``id`` and ``reserved_datetime``.
    """
    result = check_exact_slot(requested_at, reservations)
    if not result.valid:
        return result

    result = check_buffer(requested_at, reservations, buffer_minutes, scan_mode, tz)
    if not result.valid:
        return result

    result = check_shop_hours(requested_at, shop_hours, tz, assumed_duration_minutes)
    if not result.valid:
        return result

    logger.debug(f"All availability checks passed for {_as_utc(requested_at).isoformat()}")
    return AvailabilityResult.ok()
