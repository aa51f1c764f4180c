from datetime import date, datetime, time, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from app.core.config import settings

TzLike = Union[str, ZoneInfo]


def get_zone(tz: Optional[TzLike] = None) -> ZoneInfo:
    if isinstance(tz, ZoneInfo):
        return tz
    return ZoneInfo(tz or settings.SHOP_TIMEZONE)


def local_to_utc(day: date, wall_time: time, tz: Optional[TzLike] = None) -> datetime:
    """Combine a shop-local date and wall-clock time into a UTC instant.

    A time that carries its own offset (``"02:00:00Z"``) is taken at that
    offset rather than as shop-local wall-clock time.
    """
    if wall_time.tzinfo is not None:
        return datetime.combine(day, wall_time).astimezone(timezone.utc)
    local = datetime.combine(day, wall_time).replace(tzinfo=get_zone(tz))
    return local.astimezone(timezone.utc)


def utc_to_local(instant: datetime, tz: Optional[TzLike] = None) -> datetime:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(get_zone(tz))


def day_of_week(day: date) -> int:
    """Shop schedule numbering: 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def format_local_time(instant: datetime, tz: Optional[TzLike] = None) -> str:
    """Render an instant as shop-local ``h:MM AM`` text."""
    local = utc_to_local(instant, tz)
    hour = local.hour % 12 or 12
    suffix = "PM" if local.hour >= 12 else "AM"
    return f"{hour}:{local.minute:02d} {suffix}"


def format_wall_time(wall_time: time) -> str:
    hour = wall_time.hour % 12 or 12
    suffix = "PM" if wall_time.hour >= 12 else "AM"
    return f"{hour}:{wall_time.minute:02d} {suffix}"
