# Metadata for create_all / migrations picks up every model imported here
from .vehicle import Vehicle
from .driver import Driver
from .reservation import Reservation
from .maintenance_history import MaintenanceHistory
from .automation_log import AutomationLog
from .enums import VehicleStatus, ReservationStatus, AutomationAction, MaintenanceKind
