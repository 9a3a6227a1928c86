import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

# Models
from models.automation_log import AutomationLog
from models.driver import Driver
from models.enums import AutomationAction, ReservationStatus, VehicleStatus
from models.reservation import Reservation
from models.vehicle import Vehicle

# Core
from core.clock import Clock, to_utc
from core.db import unit_of_work
from core.environment import FleetSettings
from core.metrics import track_performance

# Services
from services import email_templates
from services.assignment import AutoAssignmentSelector
from services.availability import AvailabilityResolver, candidate_ids
from services.datastore import lock_vehicle, with_datastore_retry
from services.exceptions import (
    InactiveDriver,
    NoVehicleAvailable,
    NotFound,
    OverlappingReservation,
    VehicleBlocked,
)
from services.maintenance_status import MaintenanceStatusEngine
from services.notifications import NotificationResult, Notifier
from services.validators import BusinessRules

logger = logging.getLogger(__name__)


@dataclass
class ReservationOutcome:
    """
    The business result and the confirmation email result, kept apart: a
    failed email never turns a created reservation into a failure.
    """
    reservation: Reservation
    notification: Optional[NotificationResult]

    @property
    def notification_sent(self) -> bool:
        return bool(self.notification and self.notification.success)


@dataclass
class _WrittenReservation:
    reservation: Reservation
    plate: str
    vehicle_label: str


class ReservationService:
    """
    Reservation creation flow.

    1. Validate dates, destinations, driver and companions
    2. Resolve the available pool (AvailabilityResolver)
    3. Pick the vehicle: explicit choice must be in the pool, otherwise
       AutoAssignmentSelector's ranking is tried in order
    4. Write with the vehicle row locked, re-checking status, maintenance
       blocking and overlap against committed state
    5. Send the confirmation email; its outcome is reported separately

    A candidate lost to a concurrent writer between steps 2 and 4 fails the
    re-check and the next ranked candidate is tried instead.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        settings: FleetSettings,
        notifier: Optional[Notifier] = None,
        engine: Optional[MaintenanceStatusEngine] = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings
        self.notifier = notifier
        self.engine = engine or MaintenanceStatusEngine()
        self.resolver = AvailabilityResolver(db, clock, settings, engine=self.engine)
        self.selector = AutoAssignmentSelector()

    @track_performance(service_name="ReservationService")
    async def create_reservation(
        self,
        driver_id: int,
        pickup_date: date,
        return_date: date,
        destinations: Iterable[str],
        vehicle_id: Optional[int] = None,
        companion_ids: Sequence[int] = (),
    ) -> ReservationOutcome:
        """
        Args:
            driver_id (int): primary driver
            pickup_date (date): first day, today or later
            return_date (date): last day (inclusive), not before pickup_date
            destinations (Iterable[str]): free text, trimmed and deduplicated
            vehicle_id (int, optional): explicit vehicle; auto-selected when omitted
            companion_ids (Sequence[int]): other drivers on the trip

        Raises:
            InvalidDateRange, NoDestinationProvided, DuplicateDestination,
            NotFound, InactiveDriver, VehicleBlocked, OverlappingReservation,
            NoVehicleAvailable, DataUnavailable
        """
        BusinessRules.validate_trip_dates(pickup_date, return_date, today=self.clock.today())
        cleaned_destinations = BusinessRules.normalize_destinations(destinations)

        driver_name, driver_email = await self._check_driver(driver_id)
        companions = await self._check_companions(driver_id, companion_ids)

        pool = await self.resolver.find_available(pickup_date, return_date)
        ranked_ids = candidate_ids(pool)

        if vehicle_id is not None:
            if vehicle_id not in ranked_ids:
                await self._explain_unavailable(vehicle_id, pickup_date, return_date)
            candidates = [vehicle_id]
        else:
            if self.selector.select_best(pool) is None:
                raise NoVehicleAvailable(
                    f"No vehicle is available from {pickup_date.isoformat()} to {return_date.isoformat()}."
                )
            candidates = ranked_ids

        written = None
        for candidate_id in candidates:
            try:
                written = await with_datastore_retry(
                    self._write_reservation,
                    candidate_id,
                    driver_id,
                    companions,
                    pickup_date,
                    return_date,
                    cleaned_destinations,
                    policy=self.settings.retry,
                )
                break
            except (OverlappingReservation, VehicleBlocked):
                if vehicle_id is not None:
                    raise
                logger.info(
                    "Vehicle lost to a concurrent reservation, trying next candidate",
                    extra={"vehicle_id": candidate_id},
                )

        if written is None:
            raise NoVehicleAvailable(
                f"No vehicle is available from {pickup_date.isoformat()} to {return_date.isoformat()}."
            )

        reservation = written.reservation
        logger.info(
            "Reservation created",
            extra={
                "reservation_id": reservation.id,
                "vehicle_id": reservation.vehicle_id,
                "driver_id": driver_id,
                "auto_selected": vehicle_id is None,
            },
        )

        notification = await self._send_confirmation(written, driver_name, driver_email, cleaned_destinations)
        return ReservationOutcome(reservation=reservation, notification=notification)

    async def _check_driver(self, driver_id: int):
        driver = await self.db.get(Driver, driver_id)
        if driver is None:
            raise NotFound("Driver", driver_id)
        if not driver.active:
            raise InactiveDriver(f"Driver {driver.name} is inactive.")
        return driver.name, driver.email

    async def _check_companions(self, driver_id: int, companion_ids: Sequence[int]) -> List[int]:
        unique = []
        for companion_id in companion_ids or ():
            if companion_id != driver_id and companion_id not in unique:
                unique.append(companion_id)
        if not unique:
            return []

        result = await self.db.execute(select(Driver.id).where(Driver.id.in_(unique)))
        found = set(result.scalars().all())
        for companion_id in unique:
            if companion_id not in found:
                raise NotFound("Driver", companion_id)
        return unique

    async def _explain_unavailable(self, vehicle_id: int, pickup_date: date, return_date: date):
        """Raises the most specific reason an explicitly chosen vehicle is not in the pool."""
        vehicle = await self.db.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        if self.engine.evaluate(vehicle).is_blocked:
            raise VehicleBlocked(f"Vehicle {vehicle.plate} is past its revision margin and cannot be reserved.")
        if vehicle.status != VehicleStatus.AVAILABLE.value or (
            vehicle.available_from is not None and vehicle.available_from > pickup_date
        ):
            raise VehicleBlocked(f"Vehicle {vehicle.plate} is not available (status: {vehicle.status}).")
        raise OverlappingReservation(
            f"Vehicle {vehicle.plate} already has a reservation between "
            f"{pickup_date.isoformat()} and {return_date.isoformat()}."
        )

    async def _write_reservation(
        self,
        vehicle_id: int,
        driver_id: int,
        companion_ids: List[int],
        pickup_date: date,
        return_date: date,
        destinations: List[str],
    ) -> _WrittenReservation:
        async with unit_of_work(self.db):
            # Lock the vehicle row; concurrent writers for it queue here
            vehicle = await lock_vehicle(self.db, vehicle_id)

            if vehicle.status != VehicleStatus.AVAILABLE.value or (
                vehicle.available_from is not None and vehicle.available_from > pickup_date
            ):
                raise VehicleBlocked(f"Vehicle {vehicle.plate} is not available (status: {vehicle.status}).")
            if self.engine.evaluate(vehicle).is_blocked:
                raise VehicleBlocked(f"Vehicle {vehicle.plate} is past its revision margin and cannot be reserved.")

            # Re-check for overlapping reservations after the lock
            existing = await self.db.execute(
                select(func.count(Reservation.id)).where(
                    Reservation.vehicle_id == vehicle_id,
                    Reservation.status == ReservationStatus.ACTIVE.value,
                    Reservation.pickup_date <= return_date,
                    Reservation.return_date >= pickup_date,
                )
            )
            if existing.scalar() > 0:
                raise OverlappingReservation(
                    f"Vehicle {vehicle.plate} already has a reservation between "
                    f"{pickup_date.isoformat()} and {return_date.isoformat()}."
                )

            reservation = Reservation(
                vehicle_id=vehicle_id,
                driver_id=driver_id,
                companion_ids=list(companion_ids),
                pickup_date=pickup_date,
                return_date=return_date,
                destinations=list(destinations),
                status=ReservationStatus.ACTIVE.value,
                start_odometer=vehicle.current_odometer or 0,
            )
            self.db.add(reservation)
            await self.db.flush()

            written = _WrittenReservation(
                reservation=reservation,
                plate=vehicle.plate,
                vehicle_label=" ".join(p for p in (vehicle.brand, vehicle.model) if p),
            )
        return written

    async def _send_confirmation(
        self,
        written: _WrittenReservation,
        driver_name: str,
        driver_email: Optional[str],
        destinations: List[str],
    ) -> Optional[NotificationResult]:
        if self.notifier is None:
            return None

        reservation = written.reservation
        reservation_id = reservation.id
        message = email_templates.reservation_confirmation(
            recipient=driver_email or "",
            driver_name=driver_name,
            plate=written.plate,
            vehicle_label=written.vehicle_label,
            pickup_date=reservation.pickup_date,
            return_date=reservation.return_date,
            destinations=destinations,
            reservation_id=reservation_id,
            system_url=self.settings.system_url,
        )
        result = await self.notifier.send(message)

        try:
            async with unit_of_work(self.db):
                if result.success:
                    reservation.confirmation_sent_at = to_utc(self.clock.now())
                else:
                    self.db.add(
                        AutomationLog(
                            reservation_id=reservation_id,
                            vehicle_id=reservation.vehicle_id,
                            action_type=AutomationAction.NOTIFICATION_FAILED.value,
                            recipient=driver_email,
                            created_at=to_utc(self.clock.now()),
                            detail=f"confirmation: {result.error}",
                        )
                    )
        except SQLAlchemyError as e:
            # The reservation is already committed; only the bookkeeping is lost
            logger.warning(
                "Could not record confirmation outcome",
                extra={"reservation_id": reservation_id, "error": str(e)},
            )

        if not result.success:
            logger.warning(
                "Reservation confirmation email failed",
                extra={"reservation_id": reservation_id, "error": result.error},
            )
        return result
