from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MaintenanceRecordRequest(BaseModel):
    odometer: Optional[int] = Field(None, ge=0, description="Reading at the time of the work; defaults to the current odometer")
    performed_on: Optional[date] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = Field(None, ge=0)
    performed_by: Optional[str] = None


class MaintenanceHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: int
    kind: str
    odometer: int
    performed_on: date
    next_odometer: int
    next_date: Optional[date] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = None
    performed_by: Optional[str] = None
    created_at: datetime
