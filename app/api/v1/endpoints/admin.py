from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.auth import require_admin
from app.api.deps.database import get_db
from app.core.exceptions import StorageError
from app.core.types import utcnow
from app.schemas.auth import Identity
from app.schemas.reservation import ReservationStats
from app.schemas.scheduling import SweepResult
from app.services.scheduling import SchedulingService

router = APIRouter()


@router.post("/sweep", response_model=SweepResult)
async def run_expiry_sweep(
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    """Cancel accepted reservations whose time has passed, right now."""
    now = utcnow()
    try:
        cancelled = await SchedulingService(db).expire_passed_reservations(now)
    except StorageError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message
        )
    return SweepResult(cancelled=cancelled, ran_at=now)


@router.get("/stats", response_model=ReservationStats)
async def get_reservation_stats(
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await SchedulingService(db).get_reservation_stats()
