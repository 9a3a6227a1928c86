import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

# Models
from models.automation_log import AutomationLog
from models.enums import AutomationAction, ReservationStatus, VehicleStatus
from models.reservation import Reservation
from models.vehicle import Vehicle

# Core
from core.clock import Clock, to_utc
from core.db import unit_of_work
from core.environment import FleetSettings
from core.metrics import track_performance

# Services
from services.datastore import lock_reservation, lock_vehicle, with_datastore_retry
from services.exceptions import InvalidTripState
from services.odometer import advance_odometer
from services.validators import BusinessRules

logger = logging.getLogger(__name__)


@dataclass
class TripResult:
    reservation_id: int
    vehicle_id: int
    status: str
    end_odometer: Optional[int]
    vehicle_status: str
    vehicle_odometer: int
    odometer_updated: bool = False
    cooldown_applied: bool = False


class TripLifecycleController:
    """
    Reservation state transitions: active -> completed, active -> cancelled.

    Both terminal states are final. A completed reservation with a null
    end_odometer is the pending-mileage state left behind by
    auto-completion; `finalize` on it only records the reading.

    Every transition runs in one unit of work with the reservation and its
    vehicle locked, so a failure leaves no partial state.
    """

    def __init__(self, db: AsyncSession, clock: Clock, settings: FleetSettings):
        self.db = db
        self.clock = clock
        self.settings = settings

    @track_performance(service_name="TripLifecycleController")
    async def finalize(self, reservation_id: int, end_odometer: int) -> TripResult:
        """
        Records the final odometer of a trip.

        Args:
            reservation_id (int): reservation to finalize
            end_odometer (int): final km reading reported by the driver

        Returns:
            TripResult: the new reservation and vehicle state

        Raises:
            NotFound: unknown reservation or vehicle
            InvalidTripState: trip was cancelled or already has a final reading
            InvalidOdometerReading: reading below the trip start or the vehicle odometer
            DataUnavailable: datastore failure after retries
        """
        return await with_datastore_retry(
            self._finalize_once, reservation_id, end_odometer, policy=self.settings.retry
        )

    async def _finalize_once(self, reservation_id: int, end_odometer: int) -> TripResult:
        async with unit_of_work(self.db):
            reservation = await lock_reservation(self.db, reservation_id)

            if reservation.status == ReservationStatus.CANCELLED.value:
                raise InvalidTripState(f"Reservation {reservation_id} was cancelled.")
            if reservation.status == ReservationStatus.COMPLETED.value and reservation.end_odometer is not None:
                raise InvalidTripState(f"Reservation {reservation_id} is already finalized.")

            vehicle = await lock_vehicle(self.db, reservation.vehicle_id)

            # Validated against the locked rows, before any write
            BusinessRules.validate_end_odometer(
                end_odometer, reservation.start_odometer, vehicle.current_odometer or 0
            )

            was_active = reservation.status == ReservationStatus.ACTIVE.value
            now = to_utc(self.clock.now())

            reservation.status = ReservationStatus.COMPLETED.value
            reservation.end_odometer = end_odometer
            if reservation.completed_at is None:
                reservation.completed_at = now

            odometer_updated = advance_odometer(vehicle, end_odometer)
            cooldown_applied = self._start_cooldown(vehicle) if was_active else False

            result = TripResult(
                reservation_id=reservation.id,
                vehicle_id=vehicle.id,
                status=reservation.status,
                end_odometer=reservation.end_odometer,
                vehicle_status=vehicle.status,
                vehicle_odometer=vehicle.current_odometer,
                odometer_updated=odometer_updated,
                cooldown_applied=cooldown_applied,
            )

        logger.info(
            "Trip finalized",
            extra={
                "reservation_id": result.reservation_id,
                "vehicle_id": result.vehicle_id,
                "end_odometer": end_odometer,
                "pending_mileage_resolved": not was_active,
            },
        )
        return result

    @track_performance(service_name="TripLifecycleController")
    async def auto_complete(self, reservation_id: int) -> bool:
        """
        Pending-mileage completion used by the automation pass.

        The transition is a conditional UPDATE on `status = 'active'` and a
        return date not after today, so a second or concurrent call matches
        no row and returns False without side effects.
        """
        return await with_datastore_retry(
            self._auto_complete_once, reservation_id, policy=self.settings.retry
        )

    async def _auto_complete_once(self, reservation_id: int) -> bool:
        today = self.clock.today()
        now = to_utc(self.clock.now())

        async with unit_of_work(self.db):
            result = await self.db.execute(
                update(Reservation)
                .where(
                    Reservation.id == reservation_id,
                    Reservation.status == ReservationStatus.ACTIVE.value,
                    Reservation.return_date <= today,
                )
                .values(
                    status=ReservationStatus.COMPLETED.value,
                    auto_completed=True,
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return False

            vehicle_id = (
                await self.db.execute(select(Reservation.vehicle_id).where(Reservation.id == reservation_id))
            ).scalar_one()
            vehicle = await lock_vehicle(self.db, vehicle_id)
            self._start_cooldown(vehicle)

            self.db.add(
                AutomationLog(
                    reservation_id=reservation_id,
                    vehicle_id=vehicle_id,
                    action_type=AutomationAction.AUTO_COMPLETED.value,
                    detail="Completed without final odometer (pending mileage)",
                    created_at=now,
                )
            )

        logger.info(
            "Trip auto-completed",
            extra={"reservation_id": reservation_id, "vehicle_id": vehicle_id},
        )
        return True

    @track_performance(service_name="TripLifecycleController")
    async def cancel(self, reservation_id: int) -> TripResult:
        return await with_datastore_retry(
            self._cancel_once, reservation_id, policy=self.settings.retry
        )

    async def _cancel_once(self, reservation_id: int) -> TripResult:
        async with unit_of_work(self.db):
            reservation = await lock_reservation(self.db, reservation_id)
            if reservation.status != ReservationStatus.ACTIVE.value:
                raise InvalidTripState(
                    f"Reservation {reservation_id} is {reservation.status}; only active reservations can be cancelled."
                )

            vehicle = await lock_vehicle(self.db, reservation.vehicle_id)
            reservation.status = ReservationStatus.CANCELLED.value

            # Only a vehicle already handed over for this trip changes state
            if vehicle.status == VehicleStatus.IN_USE.value:
                vehicle.status = VehicleStatus.AVAILABLE.value

            result = TripResult(
                reservation_id=reservation.id,
                vehicle_id=vehicle.id,
                status=reservation.status,
                end_odometer=reservation.end_odometer,
                vehicle_status=vehicle.status,
                vehicle_odometer=vehicle.current_odometer,
            )

        logger.info(
            "Reservation cancelled",
            extra={"reservation_id": result.reservation_id, "vehicle_id": result.vehicle_id},
        )
        return result

    async def pending_mileage(self, driver_id: int) -> List[Reservation]:
        """Completed trips of the driver still waiting for a final odometer, newest first."""
        result = await self.db.execute(
            select(Reservation)
            .where(
                Reservation.driver_id == driver_id,
                Reservation.status == ReservationStatus.COMPLETED.value,
                Reservation.end_odometer == None,  # noqa: E711
            )
            .order_by(Reservation.return_date.desc(), Reservation.id.desc())
        )
        return list(result.scalars().all())

    async def release_cooldowns(self, today: Optional[date] = None) -> int:
        """Returns vehicles whose post-trip cooldown has ended to `available`."""
        today = today or self.clock.today()
        async with unit_of_work(self.db):
            result = await self.db.execute(
                update(Vehicle)
                .where(
                    Vehicle.status == VehicleStatus.AWAITING_WASH.value,
                    or_(Vehicle.available_from == None, Vehicle.available_from <= today),  # noqa: E711
                )
                .values(status=VehicleStatus.AVAILABLE.value, available_from=None)
                .execution_options(synchronize_session=False)
            )
        released = result.rowcount or 0
        if released:
            logger.info("Cooldowns released", extra={"vehicles": released})
        return released

    def _start_cooldown(self, vehicle: Vehicle) -> bool:
        """
        Post-trip cleaning/inspection window. Vehicles in maintenance or
        marked unavailable keep their status; only the usage time moves.
        """
        vehicle.last_used_at = to_utc(self.clock.now())
        if vehicle.status not in (VehicleStatus.AVAILABLE.value, VehicleStatus.IN_USE.value):
            return False

        vehicle.status = VehicleStatus.AWAITING_WASH.value
        vehicle.available_from = self.clock.today() + timedelta(days=self.settings.cooldown_days)
        return True
