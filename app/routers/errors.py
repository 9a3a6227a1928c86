from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from services.exceptions import (
    DataUnavailable,
    FleetDomainError,
    InvalidTripState,
    NoVehicleAvailable,
    NotFound,
    OverlappingReservation,
    ValidationFailed,
    VehicleBlocked,
)

# Most specific first; handlers are resolved through the exception MRO
STATUS_CODES = (
    (NotFound, 404),
    (OverlappingReservation, 409),
    (VehicleBlocked, 409),
    (NoVehicleAvailable, 409),
    (InvalidTripState, 409),
    (ValidationFailed, 422),
    (DataUnavailable, 503),
)


def status_code_for(exc: FleetDomainError) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def fleet_exception_handler(request: Request, exc: FleetDomainError):
    return JSONResponse(
        status_code=status_code_for(exc),
        content={
            "error": exc.__class__.__name__,
            "message": str(exc),
            "retryable": bool(getattr(exc, "retryable", False)),
        },
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(FleetDomainError, fleet_exception_handler)
