from datetime import date
from typing import Iterable, List, Optional

from services.exceptions import (
    DuplicateDestination,
    InvalidDateRange,
    InvalidOdometerReading,
    NoDestinationProvided,
)

class BusinessRules:

    @staticmethod
    def validate_trip_dates(pickup_date: date, return_date: date, today: Optional[date] = None):
        """Inclusive calendar-day range; pickup may not be in the past when `today` is given."""
        if return_date < pickup_date:
            raise InvalidDateRange(
                f"Return date {return_date.isoformat()} is before pickup date {pickup_date.isoformat()}."
            )
        if today is not None and pickup_date < today:
            raise InvalidDateRange(f"Pickup date {pickup_date.isoformat()} is in the past.")

    @staticmethod
    def normalize_destinations(destinations: Iterable[Optional[str]]) -> List[str]:
        """
        Trims every destination and drops blank entries, keeping the order.

        Duplicates are compared case-insensitively and rejected rather than
        silently merged so the driver sees what was wrong with the form.
        """
        cleaned = []
        seen = set()
        for raw in destinations or []:
            value = (raw or "").strip()
            if not value:
                continue
            key = value.casefold()
            if key in seen:
                raise DuplicateDestination(f"Destination '{value}' was given more than once.")
            seen.add(key)
            cleaned.append(value)

        if not cleaned:
            raise NoDestinationProvided("At least one destination is required.")
        return cleaned

    @staticmethod
    def validate_end_odometer(end_odometer: int, start_odometer: int, vehicle_odometer: int):
        if end_odometer < 0:
            raise InvalidOdometerReading("Odometer readings cannot be negative.")
        if end_odometer < start_odometer:
            raise InvalidOdometerReading(
                f"Final odometer {end_odometer} km is lower than the trip start reading {start_odometer} km."
            )
        if end_odometer < vehicle_odometer:
            raise InvalidOdometerReading(
                f"Final odometer {end_odometer} km is lower than the vehicle's recorded {vehicle_odometer} km."
            )
