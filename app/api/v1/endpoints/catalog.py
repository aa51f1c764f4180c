from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.database import get_db
from app.api.errors import to_http_exception
from app.core.exceptions import SchedulingError
from app.schemas.catalog import Seat, Service, ServicesForSelection, ShopHours
from app.services.catalog import CatalogService

router = APIRouter()


@router.get("/services", response_model=ServicesForSelection)
async def get_services_for_selection(db: AsyncSession = Depends(get_db)):
    """Active services grouped for the booking form."""
    return await CatalogService(db).get_services_for_selection()


@router.get("/services/base", response_model=List[Service])
async def get_base_services(db: AsyncSession = Depends(get_db)):
    return await CatalogService(db).get_base_service_candidates()


@router.get("/services/{service_id}/addons", response_model=List[Service])
async def get_addons_for_base(service_id: int, db: AsyncSession = Depends(get_db)):
    """Add-ons that can be combined with the given base service."""
    catalog = CatalogService(db)
    try:
        base_service = await catalog.get_service(service_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return await catalog.get_addon_candidates(base_service)


@router.get("/seats", response_model=List[Seat])
async def get_seats(db: AsyncSession = Depends(get_db)):
    return await CatalogService(db).get_seats_with_barbers()


@router.get("/shop-hours", response_model=List[ShopHours])
async def get_shop_hours(db: AsyncSession = Depends(get_db)):
    return await CatalogService(db).get_all_shop_hours()
