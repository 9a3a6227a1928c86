import logging

from models.vehicle import Vehicle

logger = logging.getLogger(__name__)


def advance_odometer(vehicle: Vehicle, reading: int) -> bool:
    """
    The only place `Vehicle.current_odometer` is written.

    Moves the odometer forward to `reading`; a lower reading leaves it
    untouched. Returns True when the stored value changed.
    """
    current = vehicle.current_odometer or 0
    if reading <= current:
        if reading < current:
            logger.info(
                "Ignoring odometer regression",
                extra={"vehicle_id": vehicle.id, "stored_km": current, "reading_km": reading},
            )
        return False
    vehicle.current_odometer = reading
    return True
