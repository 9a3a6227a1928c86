from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.enums import ReservationStatus, VehicleStatus
from models.reservation import Reservation
from models.vehicle import Vehicle

from core.clock import Clock, local_date
from core.metrics import track_performance

from services.availability import days_since_last_use
from services.maintenance_status import MaintenanceLevel, MaintenanceStatusEngine

_SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}

# Minimum idle days per severity, most severe first
IDLE_THRESHOLDS = (("critical", 30), ("warning", 14), ("info", 7))

MAINTENANCE_SEVERITY = {
    MaintenanceLevel.OVERDUE_BLOCKED: "critical",
    MaintenanceLevel.OVERDUE_WITHIN_MARGIN: "critical",
    MaintenanceLevel.OVERDUE: "critical",
    MaintenanceLevel.URGENT: "warning",
    MaintenanceLevel.APPROACHING: "info",
}


@dataclass
class FleetAlert:
    kind: str  # maintenance | idle
    severity: str  # critical | warning | info
    vehicle_id: int
    plate: str
    message: str
    status: Optional[str] = None
    km_until_revision: Optional[int] = None
    km_until_service: Optional[int] = None
    days_idle: Optional[int] = None


def idle_severity(days_idle: int) -> Optional[str]:
    for severity, minimum in IDLE_THRESHOLDS:
        if days_idle >= minimum:
            return severity
    return None


class FleetAlertService:
    """Dashboard alerts, recomputed on every call from the current vehicle rows."""

    def __init__(self, db: AsyncSession, clock: Clock, engine: Optional[MaintenanceStatusEngine] = None):
        self.db = db
        self.clock = clock
        self.engine = engine or MaintenanceStatusEngine()

    @track_performance(service_name="FleetAlertService")
    async def get_alerts(self) -> List[FleetAlert]:
        last_trip = (
            select(
                Reservation.vehicle_id.label("vehicle_id"),
                func.max(Reservation.return_date).label("last_return"),
            )
            .where(Reservation.status == ReservationStatus.COMPLETED.value)
            .group_by(Reservation.vehicle_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Vehicle, last_trip.c.last_return)
            .outerjoin(last_trip, last_trip.c.vehicle_id == Vehicle.id)
            .where(Vehicle.status != VehicleStatus.MAINTENANCE.value)
            .order_by(Vehicle.plate)
        )

        today = self.clock.today()
        alerts = []
        for vehicle, last_return in result.all():
            evaluation = self.engine.evaluate(vehicle)
            severity = MAINTENANCE_SEVERITY.get(evaluation.overall_status)
            if severity:
                alerts.append(
                    FleetAlert(
                        kind="maintenance",
                        severity=severity,
                        vehicle_id=vehicle.id,
                        plate=vehicle.plate,
                        message=self._maintenance_message(evaluation.overall_status, evaluation),
                        status=evaluation.overall_status.value,
                        km_until_revision=evaluation.km_until_revision,
                        km_until_service=evaluation.km_until_service,
                    )
                )

            if vehicle.status != VehicleStatus.AVAILABLE.value:
                continue
            idle_days = days_since_last_use(today, last_return, local_date(vehicle.created_at, self.clock.tz))
            severity = idle_severity(idle_days)
            if severity:
                alerts.append(
                    FleetAlert(
                        kind="idle",
                        severity=severity,
                        vehicle_id=vehicle.id,
                        plate=vehicle.plate,
                        message=(
                            f"{vehicle.plate} has not been used for {idle_days} day(s)"
                            if last_return else f"{vehicle.plate} has never been used ({idle_days} day(s) in the fleet)"
                        ),
                        days_idle=idle_days,
                    )
                )

        alerts.sort(key=lambda a: (_SEVERITY_ORDER[a.severity], a.plate, a.kind))
        return alerts

    @staticmethod
    def _maintenance_message(level: MaintenanceLevel, evaluation) -> str:
        if level is MaintenanceLevel.OVERDUE_BLOCKED:
            return "Revision overdue beyond the safety margin; blocked for new reservations"
        if level is MaintenanceLevel.OVERDUE_WITHIN_MARGIN:
            return f"Revision overdue; {evaluation.margin_remaining_km} km of margin left"
        if level is MaintenanceLevel.OVERDUE:
            return f"Service overdue by {-evaluation.km_until_service} km"
        km = min(
            k for k in (evaluation.km_until_revision, evaluation.km_until_service) if k > 0
        )
        return f"Maintenance due in {km} km"
