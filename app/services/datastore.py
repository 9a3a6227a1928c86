"""
Helpers shared by the services that write through the AsyncSession.

Row locks start with an UPDATE of the target row, then read it back with
SELECT ... FOR UPDATE. The UPDATE is what serializes writers on both
backends: PostgreSQL takes the row lock, and SQLite (whose driver only
opens a transaction on DML and ignores FOR UPDATE) takes its database
write lock. Call these first inside a unit_of_work, before any re-check
that must see committed state.
"""

from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.db import utcnow
from core.environment import RetryPolicy
from core.retry import retry_call
from models.reservation import Reservation
from models.vehicle import Vehicle
from services.exceptions import DataUnavailable, NotFound


async def _claim_row(db: AsyncSession, stmt) -> bool:
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    return bool(result.rowcount)


async def lock_vehicle(db: AsyncSession, vehicle_id: int) -> Vehicle:
    claimed = await _claim_row(
        db, update(Vehicle).where(Vehicle.id == vehicle_id).values(updated_at=utcnow())
    )
    if not claimed:
        raise NotFound("Vehicle", vehicle_id)

    return (
        await db.execute(
            select(Vehicle)
            .where(Vehicle.id == vehicle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()


async def lock_reservation(db: AsyncSession, reservation_id: int) -> Reservation:
    # No-op assignment; the write itself is the lock
    claimed = await _claim_row(
        db,
        update(Reservation).where(Reservation.id == reservation_id).values(status=Reservation.status),
    )
    if not claimed:
        raise NotFound("Reservation", reservation_id)

    return (
        await db.execute(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()


async def with_datastore_retry(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: RetryPolicy,
    before_retry: Optional[Callable[[], Awaitable[Any]]] = None,
    **kwargs: Any,
) -> Any:
    """
    Runs `func` under the retry policy; datastore errors left over once
    the budget is spent surface as DataUnavailable. Domain errors pass
    through untouched on the first attempt.
    """
    try:
        return await retry_call(func, *args, policy=policy, before_retry=before_retry, **kwargs)
    except SQLAlchemyError as e:
        raise DataUnavailable(f"Datastore operation failed: {e}") from e
