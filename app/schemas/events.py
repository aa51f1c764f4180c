from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    RESERVATION_CANCELLED = "reservation_cancelled"
    RESERVATION_RESCHEDULED = "reservation_rescheduled"
    STATUS_CHANGED = "status_changed"


class AuditAction(str, Enum):
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_CANCELLED = "reservation_cancelled"
    RESERVATION_RESCHEDULED = "reservation_rescheduled"
    STATUS_UPDATED = "status_updated"


class DomainEvent(BaseModel):
    type: EventType
    reservation_id: int
    user_id: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AuditRecord(BaseModel):
    actor_id: Optional[str] = None  # None for system actions
    action: AuditAction
    target_table: str = "reservations"
    target_id: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)
