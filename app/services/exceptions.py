class RetryableException(Exception):
    """Exception for errors that can be retried (network timeouts, temporary service unavailability)."""
    retryable = True

class FatalException(Exception):
    """Exception for non-recoverable errors (validation errors, missing records)."""
    retryable = False

class FleetDomainError(Exception):
    """Base class for all fleet domain errors."""
    retryable = False

# Infrastructure

class DataUnavailable(FleetDomainError, RetryableException):
    """Raised when the datastore stays unreachable after the retry budget is spent."""
    retryable = True

class NotificationFailed(FleetDomainError):
    """Raised inside the notifier when an email could not be delivered."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable

# Lookups

class NotFound(FleetDomainError, FatalException):
    """Raised when a referenced vehicle, driver or reservation does not exist."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id

# Validation

class ValidationFailed(FleetDomainError, FatalException):
    """Base class for business rule violations; never retried."""

class InvalidOdometerReading(ValidationFailed):
    """Raised when an odometer reading would make the vehicle odometer go backwards."""

class NoDestinationProvided(ValidationFailed):
    """Raised when a reservation has no non-blank destination."""

class DuplicateDestination(ValidationFailed):
    """Raised when the same destination appears twice in a reservation."""

class OverlappingReservation(ValidationFailed):
    """Raised when the vehicle already has an active reservation intersecting the requested dates."""

class InvalidDateRange(ValidationFailed):
    """Raised when return_date precedes pickup_date or pickup_date is in the past."""

class VehicleBlocked(ValidationFailed):
    """Raised when the vehicle is past its revision threshold plus margin, or otherwise not bookable."""

class NoVehicleAvailable(ValidationFailed):
    """Raised when no vehicle can be assigned for the requested dates."""

class InvalidTripState(ValidationFailed):
    """Raised when a reservation transition is not allowed from its current state."""

class InactiveDriver(ValidationFailed):
    """Raised when a deactivated driver is used on a new reservation."""
