from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class AutomationRunRequest(BaseModel):
    # None lets the local hour decide
    windows: Optional[List[Literal["auto_complete", "reminders", "maintenance_alerts"]]] = None


class AutomationResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ran_at: datetime
    local_hour: int
    windows: List[str]
    cooldowns_released: int
    auto_completed: int
    reminders_sent: int
    reminders_skipped: int
    reminders_failed: int
    maintenance_alerts_sent: int
    maintenance_alerts_skipped: int
    failures: int
    errors: List[str]
    truncated: bool
