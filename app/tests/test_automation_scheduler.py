"""
Tests for OverdueAutomationScheduler: time windows, idempotent
auto-completion, throttled reminders, failure isolation and
maintenance alerts.
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from core.clock import FixedClock
from models import AutomationLog, Driver, Reservation, Vehicle
from services.automation_scheduler import OverdueAutomationScheduler
from services.notifications import Notifier
from services.trip_lifecycle import TripLifecycleController
from tests.conftest import FakeSender, NO_SLEEP_RETRY, ONBOARDED, TODAY, days_ago, days_ahead


def at(hour, day=TODAY):
    return datetime(day.year, day.month, day.day, hour, 0)


@pytest.fixture
def make_scheduler(async_db_session, settings, notifier):
    def _make(clock, settings=settings, notifier=notifier):
        return OverdueAutomationScheduler(async_db_session, clock, settings, notifier)
    return _make


async def log_actions(db):
    rows = (await db.execute(select(AutomationLog).order_by(AutomationLog.id))).scalars().all()
    return [(row.action_type, row.reservation_id, row.vehicle_id) for row in rows]


class TestWindows:

    @pytest.mark.parametrize("hour, expected", [
        (18, ["auto_complete"]),
        (8, ["reminders", "maintenance_alerts"]),
        (14, ["reminders"]),
        (20, ["reminders"]),
        (3, []),
    ])
    def test_active_windows(self, make_scheduler, hour, expected):
        assert make_scheduler(FixedClock(at(hour))).active_windows(hour) == expected

    def test_configured_hours(self, make_scheduler, settings):
        custom = replace(settings, auto_complete_hours=(23,), reminder_hours=(9,), maintenance_alert_hours=(9,))
        scheduler = make_scheduler(FixedClock(at(9)), settings=custom)
        assert scheduler.active_windows(9) == ["reminders", "maintenance_alerts"]
        assert scheduler.active_windows(18) == []

    @pytest.mark.asyncio
    async def test_unknown_window_is_rejected(self, make_scheduler):
        with pytest.raises(ValueError):
            await make_scheduler(FixedClock(at(3))).run_automation_pass(windows=["weekly_report"])

    @pytest.mark.asyncio
    async def test_outside_windows_only_releases_cooldowns(self, make_scheduler, make_vehicle, make_driver, make_reservation):
        driver = await make_driver()
        vehicle = await make_vehicle(status="awaiting_wash", available_from=TODAY)
        await make_reservation(vehicle, driver, days_ago(3), days_ago(1))

        result = await make_scheduler(FixedClock(at(3))).run_automation_pass()

        assert result.windows == []
        assert result.cooldowns_released == 1
        assert result.auto_completed == 0
        assert result.reminders_sent == 0

    @pytest.mark.asyncio
    async def test_forced_window_runs_outside_its_hour(self, make_scheduler, fake_sender, make_vehicle, make_driver, make_reservation):
        driver = await make_driver()
        vehicle = await make_vehicle()
        await make_reservation(vehicle, driver, days_ago(3), days_ago(1))

        result = await make_scheduler(FixedClock(at(3))).run_automation_pass(windows=["reminders"])

        assert result.windows == ["reminders"]
        assert result.reminders_sent == 1
        assert result.auto_completed == 0


class TestAutoCompletion:

    @pytest.mark.asyncio
    async def test_due_trips_completed_once(
        self, make_scheduler, async_db_session, make_vehicle, make_driver, make_reservation
    ):
        driver = await make_driver()
        due_today = await make_reservation(await make_vehicle(status="in_use"), driver, days_ago(2), TODAY)
        overdue = await make_reservation(await make_vehicle(), driver, days_ago(5), days_ago(3))
        future = await make_reservation(await make_vehicle(), driver, TODAY, days_ahead(1))
        scheduler = make_scheduler(FixedClock(at(18)))

        first = await scheduler.run_automation_pass()
        second = await scheduler.run_automation_pass()

        assert first.auto_completed == 2
        assert second.auto_completed == 0
        for reservation in (due_today, overdue, future):
            await async_db_session.refresh(reservation)
        assert (due_today.status, due_today.end_odometer) == ("completed", None)
        assert overdue.status == "completed"
        assert future.status == "active"
        actions = [a for a, _, _ in await log_actions(async_db_session)]
        assert actions.count("auto_completed") == 2

    @pytest.mark.asyncio
    async def test_one_failing_item_does_not_stop_the_batch(
        self, make_scheduler, make_vehicle, make_driver, make_reservation
    ):
        driver = await make_driver()
        first = await make_reservation(await make_vehicle(), driver, days_ago(4), days_ago(2))
        await make_reservation(await make_vehicle(), driver, days_ago(3), days_ago(1))
        first_id = first.id
        scheduler = make_scheduler(FixedClock(at(18)))

        with patch.object(scheduler.trips, "auto_complete", AsyncMock(side_effect=[RuntimeError("deadlock"), True])) as auto:
            result = await scheduler.run_automation_pass()

        assert auto.await_count == 2
        assert result.auto_completed == 1
        assert result.failures == 1
        assert result.errors == [f"auto_complete {first_id}: deadlock"]

    @pytest.mark.asyncio
    async def test_item_budget_truncates_pass(
        self, make_scheduler, settings, fake_sender, make_vehicle, make_driver, make_reservation
    ):
        driver = await make_driver()
        for offset in (3, 2, 1):
            await make_reservation(await make_vehicle(), driver, days_ago(offset + 1), days_ago(offset))
        scheduler = make_scheduler(FixedClock(at(18)), settings=replace(settings, automation_max_items=2))

        result = await scheduler.run_automation_pass(windows=["auto_complete", "reminders"])

        assert result.auto_completed == 2
        assert result.truncated is True
        assert result.reminders_sent == 0
        assert fake_sender.sent == []

        # The next pass picks up the remainder
        rerun = await make_scheduler(FixedClock(at(18))).run_automation_pass()
        assert rerun.auto_completed == 1
        assert rerun.truncated is False


class TestReminders:

    @pytest.mark.asyncio
    async def test_reminds_pending_mileage_and_overdue_trips(
        self, make_scheduler, fake_sender, make_vehicle, make_driver, make_reservation
    ):
        pending_driver = await make_driver(email="pending@example.com")
        late_driver = await make_driver(email="late@example.com")
        on_time_driver = await make_driver(email="ontime@example.com")
        await make_reservation(await make_vehicle(), pending_driver, days_ago(3), days_ago(2), status="completed")
        await make_reservation(await make_vehicle(), late_driver, days_ago(3), days_ago(1))
        await make_reservation(await make_vehicle(), on_time_driver, days_ago(1), TODAY)
        await make_reservation(await make_vehicle(), on_time_driver, days_ago(6), days_ago(5), status="completed", end_odometer=1200)

        result = await make_scheduler(FixedClock(at(8))).run_automation_pass()

        assert result.reminders_sent == 2
        kinds = {m.recipient: m.kind for m in fake_sender.sent}
        assert kinds == {"pending@example.com": "pending_mileage", "late@example.com": "overdue_reminder"}

    @pytest.mark.asyncio
    async def test_at_most_one_reminder_per_day(
        self, make_scheduler, async_db_session, fake_sender, make_vehicle, make_driver, make_reservation
    ):
        driver = await make_driver()
        reservation = await make_reservation(await make_vehicle(), driver, days_ago(3), days_ago(2), status="completed")
        clock = FixedClock(at(8))
        scheduler = make_scheduler(clock)

        morning = await scheduler.run_automation_pass()
        rerun = await scheduler.run_automation_pass()
        clock.set(at(20))
        evening = await scheduler.run_automation_pass()

        assert (morning.reminders_sent, rerun.reminders_sent, evening.reminders_sent) == (1, 0, 0)
        assert rerun.reminders_skipped == 1
        assert evening.reminders_skipped == 1
        assert len(fake_sender.sent) == 1
        assert await log_actions(async_db_session) == [("reminder_sent", reservation.id, reservation.vehicle_id)]

    @pytest.mark.asyncio
    async def test_next_day_sends_numbered_reminder(
        self, make_scheduler, fake_sender, make_vehicle, make_driver, make_reservation
    ):
        driver = await make_driver()
        await make_reservation(await make_vehicle(), driver, days_ago(3), days_ago(2), status="completed")
        clock = FixedClock(at(8))
        scheduler = make_scheduler(clock)

        await scheduler.run_automation_pass()
        clock.set(at(8, day=days_ahead(1)))
        result = await scheduler.run_automation_pass()

        assert result.reminders_sent == 1
        assert len(fake_sender.sent) == 2
        assert "reminder #2" in fake_sender.sent[1].html_body
        assert "reminder #" not in fake_sender.sent[0].html_body
        assert fake_sender.sent[1].subject.startswith("[URGENT]")

    @pytest.mark.asyncio
    async def test_failed_send_is_logged_and_retried_later(
        self, make_scheduler, async_db_session, make_vehicle, make_driver, make_reservation
    ):
        broken = await make_driver(email="broken@example.com")
        fine = await make_driver(email="fine@example.com")
        failed_trip = await make_reservation(await make_vehicle(), broken, days_ago(3), days_ago(1))
        await make_reservation(await make_vehicle(), fine, days_ago(3), days_ago(1))
        failed_id = failed_trip.id
        sender = FakeSender(failing={"broken@example.com"})
        clock = FixedClock(at(8))
        scheduler = make_scheduler(clock, notifier=Notifier(sender, NO_SLEEP_RETRY))

        result = await scheduler.run_automation_pass()

        assert result.reminders_sent == 1
        assert result.reminders_failed == 1
        assert [m.recipient for m in sender.sent] == ["fine@example.com"]
        actions = await log_actions(async_db_session)
        assert ("notification_failed", failed_id, failed_trip.vehicle_id) in actions

        # A failed send does not count against the throttle
        sender.failing.clear()
        clock.set(at(14))
        retry = await scheduler.run_automation_pass()
        assert retry.reminders_sent == 1
        assert retry.reminders_skipped == 1
        assert sender.sent[-1].recipient == "broken@example.com"

    @pytest.mark.asyncio
    async def test_finalized_trip_gets_no_more_reminders(
        self, make_scheduler, async_db_session, clock, settings, fake_sender, make_vehicle, make_driver, make_reservation
    ):
        driver = await make_driver()
        reservation = await make_reservation(await make_vehicle(), driver, days_ago(3), days_ago(2), status="completed")
        pass_clock = FixedClock(at(8))
        scheduler = make_scheduler(pass_clock)
        await scheduler.run_automation_pass()

        await TripLifecycleController(async_db_session, clock, settings).finalize(reservation.id, 1500)
        pass_clock.set(at(8, day=days_ahead(1)))
        result = await scheduler.run_automation_pass()

        assert result.reminders_sent == 0
        assert len(fake_sender.sent) == 1


class TestMaintenanceAlerts:

    @pytest.mark.asyncio
    async def test_alerts_admin_about_revision_status(self, make_scheduler, fake_sender, make_vehicle):
        await make_vehicle(plate="OKAY001", current_odometer=1000)
        await make_vehicle(plate="NEAR001", current_odometer=9200)
        await make_vehicle(plate="BLOCK01", current_odometer=10600)
        await make_vehicle(plate="SHOP001", current_odometer=10600, status="maintenance")

        result = await make_scheduler(FixedClock(at(8))).run_automation_pass()

        assert result.maintenance_alerts_sent == 2
        assert result.failures == 0
        assert {m.recipient for m in fake_sender.sent} == {"fleet-admin@example.com"}
        subjects = sorted(m.subject for m in fake_sender.sent)
        assert subjects == [
            "Revision alert: BLOCK01 (overdue blocked)",
            "Revision alert: NEAR001 (approaching)",
        ]

    @pytest.mark.asyncio
    async def test_alert_throttle_depends_on_severity(self, make_scheduler, fake_sender, make_vehicle):
        await make_vehicle(plate="NEAR001", current_odometer=9200)
        await make_vehicle(plate="BLOCK01", current_odometer=10600)
        clock = FixedClock(at(8))
        scheduler = make_scheduler(clock)

        await scheduler.run_automation_pass()
        same_day = await scheduler.run_automation_pass(windows=["maintenance_alerts"])
        clock.set(at(8, day=days_ahead(1)))
        next_day = await scheduler.run_automation_pass()

        assert (same_day.maintenance_alerts_sent, same_day.maintenance_alerts_skipped) == (0, 2)
        # Approaching repeats weekly, overdue daily
        assert (next_day.maintenance_alerts_sent, next_day.maintenance_alerts_skipped) == (1, 1)
        assert fake_sender.sent[-1].subject == "Revision alert: BLOCK01 (overdue blocked)"

    @pytest.mark.asyncio
    async def test_no_admin_email_skips_alerts(self, make_scheduler, settings, fake_sender, make_vehicle):
        await make_vehicle(current_odometer=10600)
        scheduler = make_scheduler(FixedClock(at(8)), settings=replace(settings, admin_email=None))

        result = await scheduler.run_automation_pass()

        assert result.maintenance_alerts_sent == 0
        assert result.failures == 0
        assert fake_sender.sent == []


class SlowSender(FakeSender):
    """Keeps each send in flight long enough for a second pass to catch up."""

    async def send(self, message):
        await asyncio.sleep(0.05)
        return await super().send(message)


class TestOverlappingPasses:
    """Two passes started by the timer at once, each on its own connection."""

    async def _run_together(self, sessions, settings, sender, hour, windows):
        async def one_pass():
            async with sessions() as db:
                scheduler = OverdueAutomationScheduler(
                    db, FixedClock(at(hour)), settings, Notifier(sender, NO_SLEEP_RETRY)
                )
                return await scheduler.run_automation_pass(windows=windows)

        return await asyncio.gather(one_pass(), one_pass())

    @pytest.mark.asyncio
    async def test_pending_mileage_reminder_sent_once(self, file_sessions, settings):
        async with file_sessions() as db:
            driver = Driver(name="Ana", email="ana@example.com")
            vehicle = Vehicle(plate="OVL0001", current_odometer=1000, created_at=ONBOARDED)
            db.add_all([driver, vehicle])
            await db.flush()
            db.add(Reservation(
                vehicle_id=vehicle.id,
                driver_id=driver.id,
                pickup_date=days_ago(3),
                return_date=days_ago(2),
                status="completed",
                start_odometer=1000,
                destinations=["Campinas"],
            ))
            await db.commit()
        sender = SlowSender()

        first, second = await self._run_together(file_sessions, settings, sender, 14, ["reminders"])

        assert sorted([first.reminders_sent, second.reminders_sent]) == [0, 1]
        assert first.reminders_skipped + second.reminders_skipped == 1
        assert first.failures + second.failures == 0
        assert [m.recipient for m in sender.sent] == ["ana@example.com"]
        async with file_sessions() as db:
            assert [action for action, _, _ in await log_actions(db)] == ["reminder_sent"]

    @pytest.mark.asyncio
    async def test_maintenance_alert_sent_once(self, file_sessions, settings):
        async with file_sessions() as db:
            db.add(Vehicle(plate="BLOCK01", current_odometer=10600, created_at=ONBOARDED))
            await db.commit()
        sender = SlowSender()

        first, second = await self._run_together(file_sessions, settings, sender, 8, ["maintenance_alerts"])

        assert sorted([first.maintenance_alerts_sent, second.maintenance_alerts_sent]) == [0, 1]
        assert first.maintenance_alerts_skipped + second.maintenance_alerts_skipped == 1
        assert len(sender.sent) == 1

    @pytest.mark.asyncio
    async def test_claim_held_by_other_pass_skips_send(
        self, make_scheduler, async_db_session, fake_sender, make_vehicle, make_driver, make_reservation
    ):
        driver = await make_driver()
        reservation = await make_reservation(await make_vehicle(), driver, days_ago(3), days_ago(2), status="completed")
        reservation_id = reservation.id
        async_db_session.add(AutomationLog(
            reservation_id=reservation_id,
            action_type="reminder_sent",
            claim_key=f"reminder_sent:reservation:{reservation_id}:{TODAY.isoformat()}",
        ))
        await async_db_session.commit()
        scheduler = make_scheduler(FixedClock(at(14)))

        # The other pass committed its claim after this one read the log
        with patch.object(scheduler, "_logged_since", AsyncMock(return_value=False)):
            result = await scheduler.run_automation_pass()

        assert (result.reminders_sent, result.reminders_skipped, result.failures) == (0, 1, 0)
        assert fake_sender.sent == []
