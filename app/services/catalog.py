from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import NotFoundError, ValidationError
from app.models.seat import Seat
from app.models.service import Service, ServiceType
from app.models.shop_hours import ShopHours
from app.schemas.catalog import Service as ServiceSchema
from app.schemas.catalog import ServicesForSelection


class CatalogService:
    """Read-only lookups of services, seats and shop hours."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_service(self, service_id: int) -> Service:
        result = await self.db.execute(select(Service).where(Service.id == service_id))
        service = result.scalar_one_or_none()
        if not service:
            raise NotFoundError(
                f"Service {service_id} not found", {"service_id": service_id}
            )
        return service

    async def get_services(self, service_ids: Sequence[int]) -> list[Service]:
        """Get services in the order their ids were given."""
        if not service_ids:
            return []

        result = await self.db.execute(
            select(Service).where(Service.id.in_(list(service_ids)))
        )
        by_id = {service.id: service for service in result.scalars().all()}

        missing = [sid for sid in service_ids if sid not in by_id]
        if missing:
            raise NotFoundError(
                f"Service {missing[0]} not found", {"service_ids": missing}
            )
        return [by_id[sid] for sid in service_ids]

    async def get_base_service_candidates(self) -> list[Service]:
        result = await self.db.execute(
            select(Service)
            .where(
                Service.is_active,
                Service.can_be_base,
                Service.service_type != ServiceType.ADDON.value,
            )
            .order_by(Service.service_type, Service.price, Service.id)
        )
        return list(result.scalars().all())

    async def get_addon_candidates(self, base_service: Service) -> list[Service]:
        """Active add-ons that are not already bundled into ``base_service``."""
        if base_service.service_type == ServiceType.BOSSING.value:
            return []

        result = await self.db.execute(
            select(Service)
            .where(
                Service.is_active,
                Service.service_type == ServiceType.ADDON.value,
            )
            .order_by(Service.price, Service.id)
        )
        return [
            addon
            for addon in result.scalars().all()
            if not base_service.includes_addon(addon.name)
        ]

    async def get_services_for_selection(self) -> ServicesForSelection:
        result = await self.db.execute(
            select(Service)
            .where(Service.is_active)
            .order_by(Service.category, Service.price, Service.id)
        )

        grouped = ServicesForSelection()
        buckets = {
            ServiceType.GENERAL.value: grouped.general,
            ServiceType.MODERN_CUT.value: grouped.modern_cut,
            ServiceType.BOSSING.value: grouped.bossing,
            ServiceType.ADDON.value: grouped.addons,
        }
        for service in result.scalars().all():
            bucket = buckets.get(service.service_type)
            if bucket is not None:
                bucket.append(ServiceSchema.model_validate(service))
        return grouped

    async def find_shop_hours(self, day_of_week: int) -> Optional[ShopHours]:
        result = await self.db.execute(
            select(ShopHours).where(ShopHours.day_of_week == day_of_week)
        )
        return result.scalar_one_or_none()

    async def get_shop_hours(self, day_of_week: int) -> ShopHours:
        shop_hours = await self.find_shop_hours(day_of_week)
        if not shop_hours:
            raise NotFoundError(
                f"No shop hours configured for day {day_of_week}",
                {"day_of_week": day_of_week},
            )
        return shop_hours

    async def get_all_shop_hours(self) -> list[ShopHours]:
        result = await self.db.execute(
            select(ShopHours).order_by(ShopHours.day_of_week)
        )
        return list(result.scalars().all())

    async def get_seat(self, seat_id: int) -> Seat:
        result = await self.db.execute(
            select(Seat).options(selectinload(Seat.barber)).where(Seat.id == seat_id)
        )
        seat = result.scalar_one_or_none()
        if not seat:
            raise NotFoundError(f"Seat {seat_id} not found", {"seat_id": seat_id})
        return seat

    async def get_bookable_seat(self, seat_id: int) -> Seat:
        """Get a seat that can take bookings: available and staffed by a barber."""
        seat = await self.get_seat(seat_id)
        if seat.barber_id is None:
            raise ValidationError(
                "This seat has no barber assigned. Please select another seat.",
                {"seat_id": seat_id},
            )
        if not seat.is_available:
            raise ValidationError(
                "This seat is not available for booking.", {"seat_id": seat_id}
            )
        return seat

    async def get_seats_with_barbers(self) -> list[Seat]:
        result = await self.db.execute(
            select(Seat)
            .options(selectinload(Seat.barber))
            .where(Seat.is_available)
            .order_by(Seat.seat_number)
        )
        return list(result.scalars().all())
