import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.sql import func

from app.core.database import Base


class ServiceType(enum.Enum):
    GENERAL = "general"
    MODERN_CUT = "modern_cut"
    BOSSING = "bossing"
    ADDON = "addon"


class Service(Base):
    """Bookable service with price, duration and bundled add-ons."""

    __tablename__ = "services"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    # Booking behaviour
    service_type = Column(String(20), nullable=False, index=True)
    can_be_base = Column(Boolean, default=False, nullable=False)
    included_addons = Column(JSON, nullable=False, default=list)  # addon names

    # Service details
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def type(self) -> ServiceType:
        return ServiceType(self.service_type)

    @property
    def is_addon(self) -> bool:
        return self.service_type == ServiceType.ADDON.value

    @property
    def is_base_candidate(self) -> bool:
        """Only non-addon services flagged ``can_be_base`` may anchor a booking."""
        return bool(self.can_be_base) and not self.is_addon

    def includes_addon(self, addon_name: str) -> bool:
        return addon_name in (self.included_addons or [])

    def __repr__(self):
        return (
            f"<Service(id={self.id}, name='{self.name}', type='{self.service_type}', "
            f"duration={self.duration_minutes}min, price=${self.price})>"
        )
