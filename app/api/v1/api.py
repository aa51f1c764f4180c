from fastapi import APIRouter

from app.api.v1.endpoints import admin, catalog, reservations

api_router = APIRouter()

# Services, seats and shop hours
api_router.include_router(catalog.router, prefix="/catalog", tags=["catalog"])

# Booking and reservation lifecycle
api_router.include_router(
    reservations.router, prefix="/reservations", tags=["reservations"]
)

# Admin operations
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
