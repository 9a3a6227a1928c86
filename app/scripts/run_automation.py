"""
Cron entry point: one automation pass per invocation.

    */15 * * * * cd /srv/fleet/app && python scripts/run_automation.py

Exit status is non-zero when any item failed, so the scheduler host can
alert on it; the pass itself never stops early for a single bad item.
"""

import os
import sys
import asyncio
import logging

# Scripts run from app/; make the flat packages importable
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.clock import SystemClock
from core.db import AsyncSessionLocal
from core.environment import FleetSettings
from core.logging import setup_logging
from services.automation_scheduler import OverdueAutomationScheduler
from services.notifications import HttpEmailSender, Notifier

logger = logging.getLogger(__name__)


async def run() -> int:
    settings = FleetSettings.from_env()
    notifier = Notifier(HttpEmailSender.from_settings(settings), settings.retry)

    async with AsyncSessionLocal() as db:
        scheduler = OverdueAutomationScheduler(db, SystemClock(settings.timezone), settings, notifier)
        result = await scheduler.run_automation_pass()

    if result.failures:
        logger.error("Automation pass had failures", extra={"errors": result.errors})
        return 1
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(run()))
