# Import all models to ensure they are registered with SQLAlchemy
from . import (
    admin_log,
    barber,
    notification,
    reservation,
    reservation_service,
    seat,
    service,
    shop_hours,
)

__all__ = [
    "admin_log",
    "barber",
    "notification",
    "reservation",
    "reservation_service",
    "seat",
    "service",
    "shop_hours",
]
