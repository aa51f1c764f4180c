from datetime import datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ConflictType(str, Enum):
    EXACT_SLOT = "exact_slot"
    INSUFFICIENT_BUFFER = "insufficient_buffer"
    SHOP_CLOSED = "shop_closed"
    BEFORE_OPENING = "before_opening"
    AFTER_CLOSING = "after_closing"


class AvailabilityResult(BaseModel):
    valid: bool
    reason: Optional[str] = None
    conflict_type: Optional[ConflictType] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls) -> "AvailabilityResult":
        return cls(valid=True)

    @classmethod
    def reject(
        cls, conflict_type: ConflictType, reason: str, **details: Any
    ) -> "AvailabilityResult":
        return cls(
            valid=False, reason=reason, conflict_type=conflict_type, details=details
        )


class TimeSlot(BaseModel):
    start_time: time
    reserved_datetime: datetime
    available_seat_ids: List[int] = Field(default_factory=list)
    available_seats: int = 0


class DayAvailability(BaseModel):
    date: str
    is_open: bool
    slots: List[TimeSlot] = Field(default_factory=list)


class SweepResult(BaseModel):
    cancelled: int
    skipped: bool = False
    ran_at: datetime
