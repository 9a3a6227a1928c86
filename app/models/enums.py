from enum import Enum


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    UNAVAILABLE = "unavailable"
    AWAITING_WASH = "awaiting_wash"  # post-trip cooldown
    MAINTENANCE = "maintenance"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AutomationAction(str, Enum):
    REMINDER_SENT = "reminder_sent"
    AUTO_COMPLETED = "auto_completed"
    MAINTENANCE_ALERT_SENT = "maintenance_alert_sent"
    NOTIFICATION_FAILED = "notification_failed"


class MaintenanceKind(str, Enum):
    REVISION = "revision"
    SERVICE = "service"
