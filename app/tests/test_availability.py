"""
Tests for AvailabilityResolver: pool membership, ranking and the
client-side fallback path.
"""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from services.availability import (
    AvailabilityResolver,
    candidate_ids,
    days_since_last_use,
    overlaps,
)
from services.exceptions import DataUnavailable
from tests.conftest import days_ago, days_ahead


def db_down():
    return OperationalError("SELECT", {}, Exception("server closed the connection unexpectedly"))


@pytest.fixture(params=[True, False], ids=["server_side", "client_side"])
def resolver(request, async_db_session, clock, settings):
    """Every membership and ranking test runs against both read paths."""
    return AvailabilityResolver(async_db_session, clock, settings, prefer_server_side=request.param)


class TestHelpers:

    @pytest.mark.parametrize("existing, requested, expected", [
        ((date(2026, 3, 1), date(2026, 3, 5)), (date(2026, 3, 5), date(2026, 3, 8)), True),
        ((date(2026, 3, 1), date(2026, 3, 5)), (date(2026, 3, 6), date(2026, 3, 8)), False),
        ((date(2026, 3, 5), date(2026, 3, 5)), (date(2026, 3, 1), date(2026, 3, 9)), True),
        ((date(2026, 3, 10), date(2026, 3, 12)), (date(2026, 3, 1), date(2026, 3, 9)), False),
    ])
    def test_overlaps_is_inclusive(self, existing, requested, expected):
        assert overlaps(*existing, *requested) is expected

    def test_days_since_last_use_prefers_latest_known_date(self):
        today = date(2026, 3, 10)
        assert days_since_last_use(today, date(2026, 3, 1), date(2025, 1, 1)) == 9
        assert days_since_last_use(today, None, date(2026, 2, 8)) == 30
        assert days_since_last_use(today, None, None) == 0

    def test_days_since_last_use_never_negative(self):
        assert days_since_last_use(date(2026, 3, 10), date(2026, 3, 12), None) == 0


class TestPoolMembership:

    @pytest.mark.asyncio
    async def test_overlapping_active_reservation_excludes_vehicle(self, resolver, make_vehicle, make_driver, make_reservation):
        busy = await make_vehicle(plate="BUSY001")
        free = await make_vehicle(plate="FREE001")
        driver = await make_driver()
        await make_reservation(busy, driver, days_ahead(1), days_ahead(3))

        pool = await resolver.find_available(days_ahead(3), days_ahead(5))

        assert candidate_ids(pool) == [free.id]

    @pytest.mark.asyncio
    async def test_adjacent_range_does_not_overlap(self, resolver, make_vehicle, make_driver, make_reservation):
        vehicle = await make_vehicle()
        driver = await make_driver()
        await make_reservation(vehicle, driver, days_ahead(1), days_ahead(3))

        pool = await resolver.find_available(days_ahead(4), days_ahead(6))

        assert candidate_ids(pool) == [vehicle.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["cancelled", "completed"])
    async def test_non_active_reservations_do_not_block(self, resolver, make_vehicle, make_driver, make_reservation, status):
        vehicle = await make_vehicle()
        driver = await make_driver()
        await make_reservation(vehicle, driver, days_ahead(1), days_ahead(3), status=status)

        pool = await resolver.find_available(days_ahead(2), days_ahead(2))

        assert candidate_ids(pool) == [vehicle.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["in_use", "unavailable", "maintenance", "awaiting_wash"])
    async def test_only_available_status_is_bookable(self, resolver, make_vehicle, status):
        await make_vehicle(status=status)

        pool = await resolver.find_available(days_ahead(1), days_ahead(2))

        assert pool == []

    @pytest.mark.asyncio
    async def test_cooldown_end_must_not_be_after_pickup(self, resolver, make_vehicle):
        cooling = await make_vehicle(plate="COOL001", available_from=days_ahead(3))

        assert await resolver.find_available(days_ahead(2), days_ahead(4)) == []
        pool = await resolver.find_available(days_ahead(3), days_ahead(4))
        assert candidate_ids(pool) == [cooling.id]

    @pytest.mark.asyncio
    async def test_revision_blocked_vehicle_is_excluded(self, resolver, make_vehicle):
        await make_vehicle(plate="BLOCKED1", current_odometer=10500)
        within = await make_vehicle(plate="MARGIN01", current_odometer=10499)

        pool = await resolver.find_available(days_ahead(1), days_ahead(1))

        assert candidate_ids(pool) == [within.id]
        assert pool[0].maintenance.revision_status.value == "overdue_within_margin"

    @pytest.mark.asyncio
    async def test_empty_fleet_returns_empty_pool(self, resolver):
        assert await resolver.find_available(days_ahead(1), days_ahead(2)) == []

    @pytest.mark.asyncio
    async def test_inverted_range_is_rejected(self, resolver):
        with pytest.raises(ValueError):
            await resolver.find_available(days_ahead(3), days_ahead(1))


class TestRanking:

    @pytest.mark.asyncio
    async def test_never_used_first_then_longest_idle(self, resolver, make_vehicle, make_driver, make_reservation):
        recent = await make_vehicle(plate="AAA0001")
        idle = await make_vehicle(plate="BBB0002")
        fresh = await make_vehicle(plate="ZZZ0003")
        driver = await make_driver()
        await make_reservation(recent, driver, days_ago(7), days_ago(5), status="completed", end_odometer=1200)
        await make_reservation(idle, driver, days_ago(25), days_ago(20), status="completed", end_odometer=1300)

        pool = await resolver.find_available(days_ahead(1), days_ahead(2))

        assert candidate_ids(pool) == [fresh.id, idle.id, recent.id]
        assert [c.days_since_last_use for c in pool[1:]] == [20, 5]
        assert pool[0].never_used and pool[0].last_trip_end is None
        assert pool[1].last_trip_end == days_ago(20)

    @pytest.mark.asyncio
    async def test_latest_completed_trip_counts(self, resolver, make_vehicle, make_driver, make_reservation):
        vehicle = await make_vehicle()
        driver = await make_driver()
        await make_reservation(vehicle, driver, days_ago(40), days_ago(35), status="completed", end_odometer=1100)
        await make_reservation(vehicle, driver, days_ago(12), days_ago(10), status="completed", end_odometer=1200)

        pool = await resolver.find_available(days_ahead(1), days_ahead(1))

        assert pool[0].days_since_last_use == 10

    @pytest.mark.asyncio
    async def test_plate_breaks_ties(self, resolver, make_vehicle, make_driver, make_reservation):
        second = await make_vehicle(plate="MMM0002")
        first = await make_vehicle(plate="KKK0001")
        driver = await make_driver()
        for v in (second, first):
            await make_reservation(v, driver, days_ago(9), days_ago(8), status="completed", end_odometer=1100)

        pool = await resolver.find_available(days_ahead(1), days_ahead(1))

        assert candidate_ids(pool) == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_never_used_vehicles_ordered_by_plate(self, resolver, make_vehicle):
        later = await make_vehicle(plate="XYZ9999", created_at=datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc))
        earlier = await make_vehicle(plate="ABC0001", created_at=datetime(2026, 3, 7, 12, 0, tzinfo=timezone.utc))

        pool = await resolver.find_available(days_ahead(1), days_ahead(1))

        assert candidate_ids(pool) == [earlier.id, later.id]

    @pytest.mark.asyncio
    async def test_resolver_is_read_only(self, resolver, make_vehicle, async_db_session):
        vehicle = await make_vehicle()

        await resolver.find_available(days_ahead(1), days_ahead(2))
        await resolver.find_available(days_ahead(1), days_ahead(2))

        assert not async_db_session.dirty
        assert not async_db_session.new
        await async_db_session.refresh(vehicle)
        assert vehicle.status == "available"


class TestFallback:

    @pytest.mark.asyncio
    async def test_server_side_failure_falls_back_to_client_side(
        self, async_db_session, clock, settings, make_vehicle, make_driver, make_reservation
    ):
        busy = await make_vehicle(plate="BUSY001")
        used = await make_vehicle(plate="USED001")
        fresh = await make_vehicle(plate="ZNEW001")
        driver = await make_driver()
        await make_reservation(busy, driver, days_ahead(1), days_ahead(2))
        await make_reservation(used, driver, days_ago(6), days_ago(4), status="completed", end_odometer=1500)
        expected = [fresh.id, used.id]

        resolver = AvailabilityResolver(async_db_session, clock, settings)
        with patch.object(resolver, "_server_side_candidates", AsyncMock(side_effect=db_down())):
            pool = await resolver.find_available(days_ahead(1), days_ahead(2))

        assert candidate_ids(pool) == expected
        assert pool[1].days_since_last_use == 4

    @pytest.mark.asyncio
    async def test_both_paths_failing_raises_data_unavailable(self, async_db_session, clock, settings, make_vehicle):
        await make_vehicle()
        resolver = AvailabilityResolver(async_db_session, clock, settings)
        client_side = AsyncMock(side_effect=db_down())

        with patch.object(resolver, "_server_side_candidates", AsyncMock(side_effect=db_down())), \
                patch.object(resolver, "_client_side_candidates", client_side):
            with pytest.raises(DataUnavailable):
                await resolver.find_available(days_ahead(1), days_ahead(2))

        assert client_side.await_count == settings.retry.max_attempts
