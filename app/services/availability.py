import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

# Models
from models.vehicle import Vehicle
from models.reservation import Reservation
from models.enums import ReservationStatus, VehicleStatus

# Core
from core.clock import Clock, local_date
from core.environment import FleetSettings
from core.metrics import track_performance

# Services
from services.datastore import with_datastore_retry
from services.maintenance_status import MaintenanceEvaluation, MaintenanceStatusEngine

logger = logging.getLogger(__name__)


@dataclass
class AvailableVehicle:
    """A bookable vehicle plus the idle information used to rank it."""
    vehicle: Vehicle
    vehicle_id: int
    plate: str
    days_since_last_use: int
    last_trip_end: Optional[date]
    never_used: bool
    maintenance: MaintenanceEvaluation


def idle_sort_key(candidate: AvailableVehicle) -> Tuple[int, int, str]:
    """
    Never-used vehicles first, then longest idle first. Plate order
    breaks every tie, including between never-used vehicles.
    """
    if candidate.never_used:
        return (0, 0, candidate.plate)
    return (1, -candidate.days_since_last_use, candidate.plate)


def overlaps(existing_pickup: date, existing_return: date, pickup_date: date, return_date: date) -> bool:
    """Inclusive calendar-day interval overlap."""
    return existing_pickup <= return_date and existing_return >= pickup_date


def days_since_last_use(today: date, last_trip_end: Optional[date], onboarded_on: Optional[date]) -> int:
    """today - max(last completed return, onboarding date); 0 when neither is known."""
    known = [d for d in (last_trip_end, onboarded_on) if d is not None]
    if not known:
        return 0
    return max((today - max(known)).days, 0)


class AvailabilityResolver:
    """
    Computes the pool of vehicles that can take a reservation for an
    inclusive date range.

    A vehicle qualifies when its status is `available`, any post-trip
    cooldown has ended by the pickup date, no active reservation on it
    intersects the range, and MaintenanceStatusEngine does not report it
    as OVERDUE_BLOCKED.

    Two read paths exist:
    - server-side: one SQL statement with a NOT EXISTS overlap subquery and
      an outer join on the last completed return date
    - client-side: broader reads with the overlap test applied in Python,
      used when the server-side statement errors

    Both feed `_rank`, so the resulting list is identical. The list comes
    back already ordered for AutoAssignmentSelector.

    Pure read: no rows are written.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        settings: FleetSettings,
        engine: Optional[MaintenanceStatusEngine] = None,
        prefer_server_side: bool = True,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings
        self.engine = engine or MaintenanceStatusEngine()
        self.prefer_server_side = prefer_server_side

    @track_performance(service_name="AvailabilityResolver")
    async def find_available(self, pickup_date: date, return_date: date) -> List[AvailableVehicle]:
        """
        Args:
            pickup_date (date): first day of the trip
            return_date (date): last day of the trip (inclusive)

        Returns:
            list[AvailableVehicle]: ordered never-used first, then by idle days
            descending, then by plate

        Raises:
            ValueError: return_date precedes pickup_date (callers validate first)
            DataUnavailable: the datastore kept failing after the retry budget
        """
        if return_date < pickup_date:
            raise ValueError("return_date must not precede pickup_date")

        rows = None
        if self.prefer_server_side:
            try:
                rows = await self._server_side_candidates(pickup_date, return_date)
            except SQLAlchemyError as e:
                logger.warning(
                    "Server-side availability query failed, using client-side path",
                    extra={"error": str(e)},
                )
                await self.db.rollback()

        if rows is None:
            rows = await with_datastore_retry(
                self._client_side_candidates,
                pickup_date,
                return_date,
                policy=self.settings.retry,
                before_retry=self.db.rollback,
            )

        return self._rank(rows)

    async def _server_side_candidates(
        self, pickup_date: date, return_date: date
    ) -> List[Tuple[Vehicle, Optional[date]]]:
        last_trip = (
            select(
                Reservation.vehicle_id.label("vehicle_id"),
                func.max(Reservation.return_date).label("last_return"),
            )
            .where(Reservation.status == ReservationStatus.COMPLETED.value)
            .group_by(Reservation.vehicle_id)
            .subquery()
        )

        stmt = (
            select(Vehicle, last_trip.c.last_return)
            .outerjoin(last_trip, last_trip.c.vehicle_id == Vehicle.id)
            .where(
                Vehicle.status == VehicleStatus.AVAILABLE.value,
                or_(Vehicle.available_from == None, Vehicle.available_from <= pickup_date),  # noqa: E711
                # NOT EXISTS: any active reservation intersecting the range
                ~exists().where(
                    and_(
                        Reservation.vehicle_id == Vehicle.id,
                        Reservation.status == ReservationStatus.ACTIVE.value,
                        Reservation.pickup_date <= return_date,
                        Reservation.return_date >= pickup_date,
                    )
                ),
            )
            .order_by(Vehicle.plate)
        )
        result = await self.db.execute(stmt)
        return [(vehicle, last_return) for vehicle, last_return in result.all()]

    async def _client_side_candidates(
        self, pickup_date: date, return_date: date
    ) -> List[Tuple[Vehicle, Optional[date]]]:
        result = await self.db.execute(
            select(Vehicle)
            .where(Vehicle.status == VehicleStatus.AVAILABLE.value)
            .order_by(Vehicle.plate)
        )
        vehicles = [
            v for v in result.scalars().all()
            if v.available_from is None or v.available_from <= pickup_date
        ]
        if not vehicles:
            return []

        vehicle_ids = [v.id for v in vehicles]
        reservations = await self.db.execute(
            select(Reservation.vehicle_id, Reservation.status, Reservation.pickup_date, Reservation.return_date)
            .where(Reservation.vehicle_id.in_(vehicle_ids))
        )

        busy = set()
        last_returns: Dict[int, date] = {}
        for vehicle_id, status, existing_pickup, existing_return in reservations.all():
            if status == ReservationStatus.ACTIVE.value and overlaps(
                existing_pickup, existing_return, pickup_date, return_date
            ):
                busy.add(vehicle_id)
            elif status == ReservationStatus.COMPLETED.value:
                previous = last_returns.get(vehicle_id)
                if previous is None or existing_return > previous:
                    last_returns[vehicle_id] = existing_return

        return [(v, last_returns.get(v.id)) for v in vehicles if v.id not in busy]

    def _rank(self, rows: Iterable[Tuple[Vehicle, Optional[date]]]) -> List[AvailableVehicle]:
        today = self.clock.today()
        pool = []
        blocked = 0

        for vehicle, last_return in rows:
            evaluation = self.engine.evaluate(vehicle)
            if evaluation.is_blocked:
                blocked += 1
                continue

            onboarded_on = local_date(vehicle.created_at, self.clock.tz)
            pool.append(
                AvailableVehicle(
                    vehicle=vehicle,
                    vehicle_id=vehicle.id,
                    plate=vehicle.plate,
                    days_since_last_use=days_since_last_use(today, last_return, onboarded_on),
                    last_trip_end=last_return,
                    never_used=last_return is None,
                    maintenance=evaluation,
                )
            )

        pool.sort(key=idle_sort_key)
        logger.debug(
            "Availability resolved",
            extra={"available": len(pool), "blocked_by_maintenance": blocked},
        )
        return pool


def candidate_ids(pool: Sequence[AvailableVehicle]) -> List[int]:
    return [candidate.vehicle_id for candidate in pool]
