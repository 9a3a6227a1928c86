"""
Maintenance / revision status derivation.

Statuses are recomputed from the vehicle's stored odometer and thresholds on
every read; there is no persisted alert row that could drift from them.
Availability, alert surfaces and the admin confirmation workflow all go
through MaintenanceStatusEngine.evaluate.
"""

from dataclasses import dataclass
from enum import Enum

from models.vehicle import Vehicle


class MaintenanceLevel(str, Enum):
    OK = "ok"
    APPROACHING = "approaching"
    URGENT = "urgent"
    DUE_SOON = "urgent"
    OVERDUE = "overdue"  # service track: past due (no margin on this track)
    OVERDUE_WITHIN_MARGIN = "overdue_within_margin"  # revision track: past due, still usable
    OVERDUE_BLOCKED = "overdue_blocked"  # revision track: past due + margin, not bookable

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    MaintenanceLevel.OK: 0,
    MaintenanceLevel.APPROACHING: 1,
    MaintenanceLevel.URGENT: 2,
    MaintenanceLevel.OVERDUE: 3,
    MaintenanceLevel.OVERDUE_WITHIN_MARGIN: 3,
    MaintenanceLevel.OVERDUE_BLOCKED: 4,
}


@dataclass(frozen=True)
class MaintenanceEvaluation:
    vehicle_id: int
    service_status: MaintenanceLevel
    revision_status: MaintenanceLevel
    overall_status: MaintenanceLevel
    km_until_service: int
    km_until_revision: int
    margin_remaining_km: int  # next_revision + margin - current; <= 0 means blocked

    @property
    def is_blocked(self) -> bool:
        return self.revision_status is MaintenanceLevel.OVERDUE_BLOCKED


class MaintenanceStatusEngine:
    """
    Pure threshold classifier. Safe to call any number of times; it only
    reads the vehicle's current_odometer, next_service_odometer,
    next_revision_odometer and service_margin_km.
    """

    def __init__(self, approaching_km: int = 1000, urgent_km: int = 500):
        if urgent_km > approaching_km:
            raise ValueError("urgent_km must not exceed approaching_km")
        self.approaching_km = approaching_km
        self.urgent_km = urgent_km

    def classify_revision(self, km_until_revision: int, margin_remaining_km: int) -> MaintenanceLevel:
        # First match wins
        if margin_remaining_km <= 0:
            return MaintenanceLevel.OVERDUE_BLOCKED
        if km_until_revision <= 0:
            return MaintenanceLevel.OVERDUE_WITHIN_MARGIN
        return self._classify_upcoming(km_until_revision)

    def classify_service(self, km_until_service: int) -> MaintenanceLevel:
        if km_until_service <= 0:
            return MaintenanceLevel.OVERDUE
        return self._classify_upcoming(km_until_service)

    def _classify_upcoming(self, km_remaining: int) -> MaintenanceLevel:
        if km_remaining <= self.urgent_km:
            return MaintenanceLevel.URGENT
        if km_remaining <= self.approaching_km:
            return MaintenanceLevel.APPROACHING
        return MaintenanceLevel.OK

    def evaluate(self, vehicle: Vehicle) -> MaintenanceEvaluation:
        current = vehicle.current_odometer or 0
        margin = vehicle.service_margin_km or 0

        km_until_service = vehicle.next_service_odometer - current
        km_until_revision = vehicle.next_revision_odometer - current
        margin_remaining = vehicle.next_revision_odometer + margin - current

        service_status = self.classify_service(km_until_service)
        revision_status = self.classify_revision(km_until_revision, margin_remaining)

        # Ties go to the revision track: it carries the margin information
        overall = revision_status if revision_status.severity >= service_status.severity else service_status

        return MaintenanceEvaluation(
            vehicle_id=vehicle.id,
            service_status=service_status,
            revision_status=revision_status,
            overall_status=overall,
            km_until_service=km_until_service,
            km_until_revision=km_until_revision,
            margin_remaining_km=margin_remaining,
        )
