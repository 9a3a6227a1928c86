from functools import lru_cache

from fastapi import Depends

from core.clock import Clock, SystemClock
from core.environment import FleetSettings
from services.notifications import HttpEmailSender, Notifier


@lru_cache
def get_settings() -> FleetSettings:
    return FleetSettings.from_env()


def get_clock(settings: FleetSettings = Depends(get_settings)) -> Clock:
    return SystemClock(settings.timezone)


def get_notifier(settings: FleetSettings = Depends(get_settings)) -> Notifier:
    return Notifier(HttpEmailSender.from_settings(settings), settings.retry)
