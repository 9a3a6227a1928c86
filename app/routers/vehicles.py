from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock
from core.db import get_db
from core.environment import FleetSettings
from routers.deps import get_clock, get_settings
from schemas.maintenance import MaintenanceHistoryOut, MaintenanceRecordRequest
from schemas.vehicle import AvailabilityOut, AvailableVehicleOut, FleetAlertOut, MaintenanceStatusOut
from services.assignment import AutoAssignmentSelector
from services.availability import AvailabilityResolver
from services.fleet_alerts import FleetAlertService
from services.maintenance_service import MaintenanceService
from services.maintenance_status import MaintenanceEvaluation
from services.validators import BusinessRules

router = APIRouter(tags=["vehicles"])


def _maintenance_out(evaluation: MaintenanceEvaluation) -> MaintenanceStatusOut:
    return MaintenanceStatusOut(
        vehicle_id=evaluation.vehicle_id,
        service_status=evaluation.service_status.value,
        revision_status=evaluation.revision_status.value,
        overall_status=evaluation.overall_status.value,
        km_until_service=evaluation.km_until_service,
        km_until_revision=evaluation.km_until_revision,
        margin_remaining_km=evaluation.margin_remaining_km,
        is_blocked=evaluation.is_blocked,
    )


@router.get("/vehicles/available", response_model=AvailabilityOut)
async def available_vehicles(
    pickup_date: date = Query(...),
    return_date: date = Query(...),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
):
    """Bookable vehicles for the range, in auto-selection order."""
    BusinessRules.validate_trip_dates(pickup_date, return_date, today=clock.today())

    pool = await AvailabilityResolver(db, clock, settings).find_available(pickup_date, return_date)
    best = AutoAssignmentSelector.select_best(pool)

    return AvailabilityOut(
        pickup_date=pickup_date,
        return_date=return_date,
        best_vehicle_id=best.vehicle_id if best else None,
        vehicles=[
            AvailableVehicleOut(
                vehicle_id=c.vehicle_id,
                plate=c.plate,
                model=c.vehicle.model,
                brand=c.vehicle.brand,
                current_odometer=c.vehicle.current_odometer,
                days_since_last_use=c.days_since_last_use,
                never_used=c.never_used,
                last_trip_end=c.last_trip_end,
                maintenance_status=c.maintenance.overall_status.value,
            )
            for c in pool
        ],
    )


@router.get("/vehicles/{vehicle_id}/maintenance", response_model=MaintenanceStatusOut)
async def vehicle_maintenance(
    vehicle_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
):
    evaluation = await MaintenanceService(db, clock, settings).evaluate(vehicle_id)
    return _maintenance_out(evaluation)


@router.get("/vehicles/{vehicle_id}/maintenance/history", response_model=List[MaintenanceHistoryOut])
async def vehicle_maintenance_history(
    vehicle_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
):
    service = MaintenanceService(db, clock, settings)
    await service.evaluate(vehicle_id)  # 404 for unknown vehicles
    return await service.history(vehicle_id)


@router.post("/vehicles/{vehicle_id}/revision", response_model=MaintenanceHistoryOut, status_code=201)
async def confirm_revision(
    vehicle_id: int,
    req: MaintenanceRecordRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
):
    return await MaintenanceService(db, clock, settings).confirm_revision(vehicle_id, **req.model_dump())


@router.post("/vehicles/{vehicle_id}/service", response_model=MaintenanceHistoryOut, status_code=201)
async def record_service(
    vehicle_id: int,
    req: MaintenanceRecordRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
):
    return await MaintenanceService(db, clock, settings).record_service(vehicle_id, **req.model_dump())


@router.get("/alerts", response_model=List[FleetAlertOut])
async def fleet_alerts(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await FleetAlertService(db, clock).get_alerts()
