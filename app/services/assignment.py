from dataclasses import dataclass, field, replace
from datetime import date
from typing import Optional, Sequence, Tuple

from services.availability import AvailabilityResolver, AvailableVehicle


class AutoAssignmentSelector:
    """
    Picks the vehicle for a reservation from an already ranked pool.

    AvailabilityResolver returns the pool ordered (never-used first, then
    longest idle, then plate), so selection is taking the head. Callers
    must treat None as "no vehicle available for these dates".
    """

    @staticmethod
    def select_best(pool: Sequence[AvailableVehicle]) -> Optional[AvailableVehicle]:
        if not pool:
            return None
        return pool[0]


@dataclass(frozen=True)
class ReservationDraft:
    """
    Reservation form state between the date pickers and submission.

    `manual` records that the user picked `selected` themselves; a manual
    pick survives a date change only while it stays in the pool.
    """
    pickup_date: Optional[date] = None
    return_date: Optional[date] = None
    pool: Tuple[AvailableVehicle, ...] = field(default_factory=tuple)
    selected: Optional[AvailableVehicle] = None
    manual: bool = False

    @property
    def has_valid_range(self) -> bool:
        return (
            self.pickup_date is not None
            and self.return_date is not None
            and self.return_date >= self.pickup_date
        )

    def choose(self, vehicle_id: int) -> "ReservationDraft":
        """Manual pick; ignored when the vehicle is not in the current pool."""
        for candidate in self.pool:
            if candidate.vehicle_id == vehicle_id:
                return replace(self, selected=candidate, manual=True)
        return self


async def on_date_range_changed(
    draft: ReservationDraft,
    pickup_date: Optional[date],
    return_date: Optional[date],
    resolver: AvailabilityResolver,
    selector: AutoAssignmentSelector = AutoAssignmentSelector(),
) -> ReservationDraft:
    """
    The single transition for a date change:
    invalidate selection -> re-run resolver and selector -> update selection.

    An incomplete or inverted range leaves an empty pool and no selection.
    """
    cleared = ReservationDraft(pickup_date=pickup_date, return_date=return_date)
    if not cleared.has_valid_range:
        return cleared

    pool = tuple(await resolver.find_available(pickup_date, return_date))

    if draft.manual and draft.selected is not None:
        for candidate in pool:
            if candidate.vehicle_id == draft.selected.vehicle_id:
                return replace(cleared, pool=pool, selected=candidate, manual=True)

    return replace(cleared, pool=pool, selected=selector.select_best(pool), manual=False)
