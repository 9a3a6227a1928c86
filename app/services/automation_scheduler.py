import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

# Models
from models.automation_log import AutomationLog
from models.driver import Driver
from models.enums import AutomationAction, ReservationStatus, VehicleStatus
from models.reservation import Reservation
from models.vehicle import Vehicle

# Core
from core.clock import Clock, start_of_local_day, to_utc
from core.db import unit_of_work
from core.environment import FleetSettings
from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector

# Services
from services import email_templates
from services.maintenance_status import MaintenanceLevel, MaintenanceStatusEngine
from services.notifications import Notifier
from services.trip_lifecycle import TripLifecycleController

logger = logging.getLogger(__name__)

WINDOW_AUTO_COMPLETE = "auto_complete"
WINDOW_REMINDERS = "reminders"
WINDOW_MAINTENANCE = "maintenance_alerts"
ALL_WINDOWS = (WINDOW_AUTO_COMPLETE, WINDOW_REMINDERS, WINDOW_MAINTENANCE)

SENT, SKIPPED, FAILED = "sent", "skipped", "failed"


@dataclass
class AutomationResult:
    ran_at: datetime
    local_hour: int
    windows: List[str] = field(default_factory=list)
    cooldowns_released: int = 0
    auto_completed: int = 0
    reminders_sent: int = 0
    reminders_skipped: int = 0
    reminders_failed: int = 0
    maintenance_alerts_sent: int = 0
    maintenance_alerts_skipped: int = 0
    failures: int = 0
    errors: List[str] = field(default_factory=list)
    truncated: bool = False


class _Budget:
    """Item and wall-clock cap for one pass."""

    def __init__(self, max_items: int, max_seconds: float):
        self.max_items = max_items
        self.deadline = time.monotonic() + max_seconds
        self.used = 0

    def take(self) -> bool:
        if self.used >= self.max_items or time.monotonic() >= self.deadline:
            return False
        self.used += 1
        return True


class OverdueAutomationScheduler:
    """
    One bounded automation pass, triggered by an external timer.

    Each invocation checks the local hour (fleet timezone) against the
    configured windows:
    - auto-complete window: active trips whose return date is today or
      earlier are completed without a final odometer (pending mileage)
    - reminder window: drivers of pending-mileage or overdue active trips
      get at most one reminder per throttle period
    - maintenance window: the administrator is alerted about vehicles whose
      revision is approaching or overdue

    Cooldown release runs on every pass.

    Nothing is remembered between invocations: every decision re-reads the
    reservation rows and the automation_logs audit table, so overlapping or
    retried passes do not double-complete or double-send. Sends are claimed
    in automation_logs (unique claim_key) and committed before the email is
    sent, so of two overlapping passes only one sends. A failing item is
    logged and counted and the batch moves on.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        settings: FleetSettings,
        notifier: Notifier,
        trips: Optional[TripLifecycleController] = None,
        engine: Optional[MaintenanceStatusEngine] = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings
        self.notifier = notifier
        self.trips = trips or TripLifecycleController(db, clock, settings)
        self.engine = engine or MaintenanceStatusEngine()

    def active_windows(self, local_hour: int) -> List[str]:
        windows = []
        if local_hour in self.settings.auto_complete_hours:
            windows.append(WINDOW_AUTO_COMPLETE)
        if local_hour in self.settings.reminder_hours:
            windows.append(WINDOW_REMINDERS)
        if local_hour in self.settings.maintenance_alert_hours:
            windows.append(WINDOW_MAINTENANCE)
        return windows

    @track_performance(service_name="OverdueAutomationScheduler")
    async def run_automation_pass(self, windows: Optional[Iterable[str]] = None) -> AutomationResult:
        """
        Args:
            windows: explicit windows to run regardless of the hour (manual
                re-runs from the admin surface); the clock decides when omitted

        Returns:
            AutomationResult: per-step counts; never raises for item failures
        """
        now = self.clock.now()
        today = now.date()
        selected = list(windows) if windows is not None else self.active_windows(now.hour)
        unknown = [w for w in selected if w not in ALL_WINDOWS]
        if unknown:
            raise ValueError(f"Unknown automation windows: {', '.join(unknown)}")

        result = AutomationResult(ran_at=now, local_hour=now.hour, windows=selected)
        budget = _Budget(self.settings.automation_max_items, self.settings.automation_max_seconds)

        try:
            result.cooldowns_released = await self.trips.release_cooldowns(today)
        except Exception as e:
            await self._record_failure(result, "release_cooldowns", None, e)

        if WINDOW_AUTO_COMPLETE in selected:
            await self._auto_complete_due(today, result, budget)
        if WINDOW_REMINDERS in selected and not result.truncated:
            await self._send_reminders(today, result, budget)
        if WINDOW_MAINTENANCE in selected and not result.truncated:
            await self._send_maintenance_alerts(today, result, budget)

        prometheus_collector.record_automation_event("trips_auto_completed", result.auto_completed)
        prometheus_collector.record_automation_event("cooldowns_released", result.cooldowns_released)
        prometheus_collector.record_automation_event("reminders_sent", result.reminders_sent)
        prometheus_collector.record_automation_event("reminders_failed", result.reminders_failed)
        prometheus_collector.record_automation_event("maintenance_alerts_sent", result.maintenance_alerts_sent)
        prometheus_collector.record_automation_event("item_failures", result.failures)

        logger.info(
            "Automation pass finished",
            extra={
                "local_hour": result.local_hour,
                "windows": result.windows,
                "auto_completed": result.auto_completed,
                "reminders_sent": result.reminders_sent,
                "reminders_skipped": result.reminders_skipped,
                "reminders_failed": result.reminders_failed,
                "maintenance_alerts_sent": result.maintenance_alerts_sent,
                "cooldowns_released": result.cooldowns_released,
                "failures": result.failures,
                "truncated": result.truncated,
            },
        )
        return result

    # Auto-completion

    async def _auto_complete_due(self, today: date, result: AutomationResult, budget: _Budget):
        ids = (
            await self.db.execute(
                select(Reservation.id)
                .where(
                    Reservation.status == ReservationStatus.ACTIVE.value,
                    Reservation.return_date <= today,
                )
                .order_by(Reservation.return_date, Reservation.id)
            )
        ).scalars().all()

        for reservation_id in ids:
            if not budget.take():
                result.truncated = True
                return
            try:
                if await self.trips.auto_complete(reservation_id):
                    result.auto_completed += 1
            except Exception as e:
                await self._record_failure(result, "auto_complete", reservation_id, e)

    # Driver reminders

    async def _send_reminders(self, today: date, result: AutomationResult, budget: _Budget):
        ids = (
            await self.db.execute(
                select(Reservation.id)
                .where(
                    or_(
                        and_(
                            Reservation.status == ReservationStatus.COMPLETED.value,
                            Reservation.end_odometer == None,  # noqa: E711
                            Reservation.return_date <= today,
                        ),
                        and_(
                            Reservation.status == ReservationStatus.ACTIVE.value,
                            Reservation.return_date < today,
                        ),
                    )
                )
                .order_by(Reservation.return_date, Reservation.id)
            )
        ).scalars().all()

        for reservation_id in ids:
            if not budget.take():
                result.truncated = True
                return
            try:
                outcome = await self._remind(reservation_id, today)
            except Exception as e:
                await self._record_failure(result, "reminder", reservation_id, e)
                continue

            if outcome == SENT:
                result.reminders_sent += 1
            elif outcome == SKIPPED:
                result.reminders_skipped += 1
            else:
                result.reminders_failed += 1

    async def _remind(self, reservation_id: int, today: date) -> str:
        reservation = await self.db.get(Reservation, reservation_id, populate_existing=True)
        if reservation is None:
            return SKIPPED

        pending_mileage = (
            reservation.status == ReservationStatus.COMPLETED.value and reservation.end_odometer is None
        )
        overdue_active = (
            reservation.status == ReservationStatus.ACTIVE.value and reservation.return_date < today
        )
        # State may have moved since the ids were collected
        if not (pending_mileage or overdue_active):
            return SKIPPED

        since = start_of_local_day(
            today - timedelta(days=max(self.settings.reminder_throttle_days, 1) - 1), self.clock.tz
        )
        if await self._logged_since(AutomationLog.reservation_id == reservation_id, AutomationAction.REMINDER_SENT, since):
            return SKIPPED

        previous = (
            await self.db.execute(
                select(func.count(AutomationLog.id)).where(
                    AutomationLog.reservation_id == reservation_id,
                    AutomationLog.action_type == AutomationAction.REMINDER_SENT.value,
                )
            )
        ).scalar()

        driver = await self.db.get(Driver, reservation.driver_id)
        vehicle = await self.db.get(Vehicle, reservation.vehicle_id)
        recipient = driver.email if driver else None
        vehicle_id = reservation.vehicle_id
        days_overdue = max((today - reservation.return_date).days, 0)

        message = email_templates.overdue_trip_reminder(
            recipient=recipient or "",
            driver_name=driver.name if driver else "driver",
            plate=vehicle.plate if vehicle else str(vehicle_id),
            reservation_id=reservation_id,
            return_date=reservation.return_date,
            days_overdue=days_overdue,
            reminder_count=(previous or 0) + 1,
            pending_mileage=pending_mileage,
            system_url=self.settings.system_url,
        )
        claim_id = await self._claim(
            f"{AutomationAction.REMINDER_SENT.value}:reservation:{reservation_id}:{today.isoformat()}",
            reservation_id=reservation_id,
            vehicle_id=vehicle_id,
            action_type=AutomationAction.REMINDER_SENT.value,
            recipient=recipient,
            detail=f"{email_templates.overdue_urgency(days_overdue)}: {days_overdue} day(s) overdue",
        )
        if claim_id is None:
            return SKIPPED

        sent = await self.notifier.send(message)
        if not sent.success:
            await self._release(claim_id, f"reminder: {sent.error}")
            return FAILED
        return SENT

    # Administrator maintenance alerts

    async def _send_maintenance_alerts(self, today: date, result: AutomationResult, budget: _Budget):
        if not self.settings.admin_email:
            logger.warning("ADMIN_EMAIL is not configured; skipping maintenance alerts")
            return

        ids = (
            await self.db.execute(
                select(Vehicle.id)
                .where(Vehicle.status != VehicleStatus.MAINTENANCE.value)
                .order_by(Vehicle.plate)
            )
        ).scalars().all()

        for vehicle_id in ids:
            if not budget.take():
                result.truncated = True
                return
            try:
                outcome = await self._alert_vehicle(vehicle_id, today)
            except Exception as e:
                await self._record_failure(result, "maintenance_alert", vehicle_id, e)
                continue

            if outcome == SENT:
                result.maintenance_alerts_sent += 1
            elif outcome == SKIPPED:
                result.maintenance_alerts_skipped += 1
            elif outcome == FAILED:
                result.failures += 1

    async def _alert_vehicle(self, vehicle_id: int, today: date) -> Optional[str]:
        vehicle = await self.db.get(Vehicle, vehicle_id, populate_existing=True)
        if vehicle is None:
            return None

        evaluation = self.engine.evaluate(vehicle)
        status = evaluation.revision_status
        if status.severity < MaintenanceLevel.APPROACHING.severity:
            return None

        throttle_days = (
            self.settings.approaching_alert_throttle_days
            if status is MaintenanceLevel.APPROACHING
            else self.settings.severe_alert_throttle_days
        )
        since = start_of_local_day(today - timedelta(days=max(throttle_days, 1) - 1), self.clock.tz)
        if await self._logged_since(AutomationLog.vehicle_id == vehicle_id, AutomationAction.MAINTENANCE_ALERT_SENT, since):
            return SKIPPED

        recipient = self.settings.admin_email
        message = email_templates.revision_alert(
            recipient=recipient,
            plate=vehicle.plate,
            vehicle_label=" ".join(p for p in (vehicle.brand, vehicle.model) if p),
            current_odometer=vehicle.current_odometer,
            next_revision_odometer=vehicle.next_revision_odometer,
            km_until_revision=evaluation.km_until_revision,
            margin_remaining_km=evaluation.margin_remaining_km,
            status=status.value,
            system_url=self.settings.system_url,
        )
        claim_id = await self._claim(
            f"{AutomationAction.MAINTENANCE_ALERT_SENT.value}:vehicle:{vehicle_id}:{today.isoformat()}",
            vehicle_id=vehicle_id,
            action_type=AutomationAction.MAINTENANCE_ALERT_SENT.value,
            recipient=recipient,
            detail=status.value,
        )
        if claim_id is None:
            return SKIPPED

        sent = await self.notifier.send(message)
        if not sent.success:
            await self._release(claim_id, f"maintenance alert: {sent.error}")
            return FAILED
        return SENT

    # Helpers

    async def _claim(self, claim_key: str, **fields) -> Optional[int]:
        """
        Commits the audit row of a send before the send happens.

        Returns the row id, or None when an overlapping pass already holds
        the same claim_key. Nothing is held open while the email goes out.
        """
        try:
            async with unit_of_work(self.db):
                entry = AutomationLog(claim_key=claim_key, created_at=to_utc(self.clock.now()), **fields)
                self.db.add(entry)
                await self.db.flush()
                claim_id = entry.id
        except IntegrityError:
            logger.info("Send already claimed by another pass", extra={"claim_key": claim_key})
            return None
        return claim_id

    async def _release(self, claim_id: int, detail: str):
        """Turns a claimed send that failed into a failure record and frees its key."""
        async with unit_of_work(self.db):
            await self.db.execute(
                update(AutomationLog)
                .where(AutomationLog.id == claim_id)
                .values(
                    action_type=AutomationAction.NOTIFICATION_FAILED.value,
                    claim_key=None,
                    detail=detail,
                )
                .execution_options(synchronize_session=False)
            )

    async def _logged_since(self, target, action: AutomationAction, since: datetime) -> bool:
        count = (
            await self.db.execute(
                select(func.count(AutomationLog.id)).where(
                    target,
                    AutomationLog.action_type == action.value,
                    AutomationLog.created_at >= since,
                )
            )
        ).scalar()
        return bool(count)

    async def _record_failure(self, result: AutomationResult, step: str, item_id: Optional[int], error: Exception):
        result.failures += 1
        result.errors.append(f"{step} {item_id}: {error}" if item_id is not None else f"{step}: {error}")
        logger.error(
            "Automation item failed",
            extra={"step": step, "item_id": item_id, "error": str(error)},
            exc_info=error,
        )
        # Leave the session usable for the next item
        await self.db.rollback()
