from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class MaintenanceStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vehicle_id: int
    service_status: str
    revision_status: str
    overall_status: str
    km_until_service: int
    km_until_revision: int
    margin_remaining_km: int
    is_blocked: bool


class AvailableVehicleOut(BaseModel):
    vehicle_id: int
    plate: str
    model: Optional[str] = None
    brand: Optional[str] = None
    current_odometer: int
    days_since_last_use: int
    never_used: bool
    last_trip_end: Optional[date] = None
    maintenance_status: str


class AvailabilityOut(BaseModel):
    pickup_date: date
    return_date: date
    best_vehicle_id: Optional[int] = None
    vehicles: List[AvailableVehicleOut]


class FleetAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    severity: str
    vehicle_id: int
    plate: str
    message: str
    status: Optional[str] = None
    km_until_revision: Optional[int] = None
    km_until_service: Optional[int] = None
    days_idle: Optional[int] = None
