import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.enums import MaintenanceKind, VehicleStatus
from models.maintenance_history import MaintenanceHistory
from models.vehicle import Vehicle

from core.clock import Clock, add_months
from core.db import unit_of_work
from core.environment import FleetSettings
from core.metrics import track_performance

from services.datastore import lock_vehicle, with_datastore_retry
from services.exceptions import InvalidDateRange, InvalidOdometerReading, NotFound
from services.maintenance_status import MaintenanceEvaluation, MaintenanceStatusEngine
from services.odometer import advance_odometer

logger = logging.getLogger(__name__)


class MaintenanceService:
    """
    Admin maintenance workflow: status lookups, revision confirmation and
    service records. Status math is delegated to MaintenanceStatusEngine;
    this service only moves the thresholds and writes history rows.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        settings: FleetSettings,
        engine: Optional[MaintenanceStatusEngine] = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings
        self.engine = engine or MaintenanceStatusEngine()

    async def evaluate(self, vehicle_id: int) -> MaintenanceEvaluation:
        vehicle = await self.db.get(Vehicle, vehicle_id, populate_existing=True)
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        return self.engine.evaluate(vehicle)

    @track_performance(service_name="MaintenanceService")
    async def confirm_revision(
        self,
        vehicle_id: int,
        odometer: Optional[int] = None,
        performed_on: Optional[date] = None,
        description: Optional[str] = None,
        cost: Optional[Decimal] = None,
        performed_by: Optional[str] = None,
    ) -> MaintenanceHistory:
        """
        Records a completed revision and moves the next revision to
        +revision_interval_km / +revision_interval_months from it.

        `odometer` defaults to the vehicle's current reading. A vehicle
        held in `maintenance` goes back to `available`.
        """
        return await with_datastore_retry(
            self._record,
            MaintenanceKind.REVISION,
            vehicle_id,
            odometer,
            performed_on,
            description,
            cost,
            performed_by,
            policy=self.settings.retry,
        )

    @track_performance(service_name="MaintenanceService")
    async def record_service(
        self,
        vehicle_id: int,
        odometer: Optional[int] = None,
        performed_on: Optional[date] = None,
        description: Optional[str] = None,
        cost: Optional[Decimal] = None,
        performed_by: Optional[str] = None,
    ) -> MaintenanceHistory:
        """Same as confirm_revision, for the service track (+service_interval_km)."""
        return await with_datastore_retry(
            self._record,
            MaintenanceKind.SERVICE,
            vehicle_id,
            odometer,
            performed_on,
            description,
            cost,
            performed_by,
            policy=self.settings.retry,
        )

    async def history(self, vehicle_id: int) -> List[MaintenanceHistory]:
        result = await self.db.execute(
            select(MaintenanceHistory)
            .where(MaintenanceHistory.vehicle_id == vehicle_id)
            .order_by(MaintenanceHistory.performed_on.desc(), MaintenanceHistory.id.desc())
        )
        return list(result.scalars().all())

    async def _record(
        self,
        kind: MaintenanceKind,
        vehicle_id: int,
        odometer: Optional[int],
        performed_on: Optional[date],
        description: Optional[str],
        cost: Optional[Decimal],
        performed_by: Optional[str],
    ) -> MaintenanceHistory:
        today = self.clock.today()
        performed_on = performed_on or today
        if performed_on > today:
            raise InvalidDateRange(f"Maintenance date {performed_on.isoformat()} is in the future.")
        if odometer is not None and odometer < 0:
            raise InvalidOdometerReading("Odometer readings cannot be negative.")

        async with unit_of_work(self.db):
            vehicle = await lock_vehicle(self.db, vehicle_id)

            reading = vehicle.current_odometer if odometer is None else odometer
            advance_odometer(vehicle, reading)

            vehicle.last_service_odometer = reading
            if kind is MaintenanceKind.REVISION:
                next_odometer = reading + self.settings.revision_interval_km
                next_date = add_months(performed_on, self.settings.revision_interval_months)
                vehicle.next_revision_odometer = next_odometer
                vehicle.last_revision_date = performed_on
                vehicle.next_revision_date = next_date
            else:
                next_odometer = reading + self.settings.service_interval_km
                next_date = None
                vehicle.next_service_odometer = next_odometer

            if vehicle.status == VehicleStatus.MAINTENANCE.value:
                vehicle.status = VehicleStatus.AVAILABLE.value

            entry = MaintenanceHistory(
                vehicle_id=vehicle_id,
                kind=kind.value,
                odometer=reading,
                performed_on=performed_on,
                next_odometer=next_odometer,
                next_date=next_date,
                description=description,
                cost=cost,
                performed_by=performed_by,
            )
            self.db.add(entry)
            await self.db.flush()

        logger.info(
            "Maintenance recorded",
            extra={
                "vehicle_id": vehicle_id,
                "kind": kind.value,
                "odometer": reading,
                "next_odometer": next_odometer,
            },
        )
        return entry
