from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReservationCreate(BaseModel):
    driver_id: int
    pickup_date: date = Field(..., description="First day of the trip")
    return_date: date = Field(..., description="Last day of the trip (inclusive)")
    destinations: List[str] = Field(..., description="Ordered destinations")
    vehicle_id: Optional[int] = Field(None, description="Explicit vehicle; auto-selected when omitted")
    companion_ids: List[int] = Field(default_factory=list)

    @field_validator('return_date')
    def return_not_before_pickup(cls, v, info):
        pickup_date = info.data.get('pickup_date')
        if pickup_date and v < pickup_date:
            raise ValueError('return_date must not be before pickup_date')
        return v


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: int
    driver_id: int
    companion_ids: List[int] = []
    pickup_date: date
    return_date: date
    destinations: List[str]
    status: str
    start_odometer: int
    end_odometer: Optional[int] = None
    auto_completed: bool = False
    completed_at: Optional[datetime] = None
    confirmation_sent_at: Optional[datetime] = None


class NotificationOut(BaseModel):
    success: bool
    error: Optional[str] = None


class ReservationCreatedOut(BaseModel):
    reservation: ReservationOut
    notification: Optional[NotificationOut] = None


class FinalizeRequest(BaseModel):
    end_odometer: int = Field(..., ge=0, description="Final odometer reading in km")


class TripResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reservation_id: int
    vehicle_id: int
    status: str
    end_odometer: Optional[int] = None
    vehicle_status: str
    vehicle_odometer: int
    odometer_updated: bool
    cooldown_applied: bool
