from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import Clock
from core.db import get_db
from core.environment import FleetSettings
from routers.deps import get_clock, get_notifier, get_settings
from schemas.automation import AutomationResultOut, AutomationRunRequest
from services.automation_scheduler import OverdueAutomationScheduler
from services.notifications import Notifier

router = APIRouter(prefix="/automation", tags=["automation"])


@router.post("/run", response_model=AutomationResultOut)
async def run_automation(
    req: Optional[AutomationRunRequest] = None,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    settings: FleetSettings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
):
    """Manual re-run of the automation pass; `windows` forces specific steps."""
    scheduler = OverdueAutomationScheduler(db, clock, settings, notifier)
    return await scheduler.run_automation_pass(windows=req.windows if req else None)
