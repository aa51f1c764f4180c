import enum

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Time
from sqlalchemy.sql import func

from app.core.database import Base


class WeekDay(enum.Enum):
    """Day-of-week numbering used by the shop schedule (Sunday first)."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6


class ShopHours(Base):
    """Opening hours for one weekday, in shop-local wall-clock time."""

    __tablename__ = "shop_hours"

    id = Column(Integer, primary_key=True, index=True)
    day_of_week = Column(Integer, unique=True, nullable=False)
    is_open = Column(Boolean, default=True, nullable=False)
    open_time = Column(Time, nullable=True)
    close_time = Column(Time, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "day_of_week >= 0 AND day_of_week <= 6", name="check_day_of_week_range"
        ),
    )

    @property
    def weekday(self) -> WeekDay:
        return WeekDay(self.day_of_week)

    def __repr__(self):
        if not self.is_open:
            return f"<ShopHours({self.weekday.name}: closed)>"
        return f"<ShopHours({self.weekday.name}: {self.open_time}-{self.close_time})>"
