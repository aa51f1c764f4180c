from datetime import time
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class Service(BaseModel):
    id: int
    name: str
    category: Optional[str] = None
    description: Optional[str] = None
    service_type: str
    can_be_base: bool
    included_addons: List[str] = Field(default_factory=list)
    duration_minutes: int
    price: Decimal
    is_active: bool

    class Config:
        from_attributes = True


class ServicesForSelection(BaseModel):
    general: List[Service] = Field(default_factory=list)
    modern_cut: List[Service] = Field(default_factory=list)
    bossing: List[Service] = Field(default_factory=list)
    addons: List[Service] = Field(default_factory=list)


class Barber(BaseModel):
    id: int
    display_name: str
    specialization: Optional[str] = None
    is_available: bool

    class Config:
        from_attributes = True


class Seat(BaseModel):
    id: int
    seat_number: int
    is_available: bool
    barber_id: Optional[int] = None
    barber: Optional[Barber] = None

    class Config:
        from_attributes = True


class ShopHours(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)
    is_open: bool
    open_time: Optional[time] = None
    close_time: Optional[time] = None

    class Config:
        from_attributes = True
