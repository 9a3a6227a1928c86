from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock
from core.db import get_db
from core.environment import FleetSettings
from routers.deps import get_clock, get_notifier, get_settings
from schemas.reservation import (
    FinalizeRequest,
    NotificationOut,
    ReservationCreate,
    ReservationCreatedOut,
    ReservationOut,
    TripResultOut,
)
from services.notifications import Notifier
from services.reservation_service import ReservationService
from services.trip_lifecycle import TripLifecycleController

router = APIRouter(tags=["reservations"])


@router.post("/reservations", response_model=ReservationCreatedOut, status_code=201)
async def create_reservation(
    req: ReservationCreate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Creates the reservation and sends the confirmation email. The email
    outcome is reported under `notification`; a failed email still
    returns 201.
    """
    service = ReservationService(db, clock, settings, notifier=notifier)
    outcome = await service.create_reservation(
        driver_id=req.driver_id,
        pickup_date=req.pickup_date,
        return_date=req.return_date,
        destinations=req.destinations,
        vehicle_id=req.vehicle_id,
        companion_ids=req.companion_ids,
    )
    return ReservationCreatedOut(
        reservation=ReservationOut.model_validate(outcome.reservation),
        notification=(
            NotificationOut(success=outcome.notification.success, error=outcome.notification.error)
            if outcome.notification else None
        ),
    )


@router.post("/reservations/{reservation_id}/finalize", response_model=TripResultOut)
async def finalize_reservation(
    reservation_id: int,
    req: FinalizeRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
):
    return await TripLifecycleController(db, clock, settings).finalize(reservation_id, req.end_odometer)


@router.post("/reservations/{reservation_id}/cancel", response_model=TripResultOut)
async def cancel_reservation(
    reservation_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
):
    return await TripLifecycleController(db, clock, settings).cancel(reservation_id)


@router.get("/drivers/{driver_id}/pending-mileage", response_model=List[ReservationOut])
async def pending_mileage(
    driver_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
):
    """Completed trips still waiting for the driver's final odometer."""
    return await TripLifecycleController(db, clock, settings).pending_mileage(driver_id)
