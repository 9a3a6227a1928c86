from sqlalchemy import Column, Integer, String, Date, DateTime, Boolean, ForeignKey, JSON, Index
from core.db import Base, utcnow
from models.enums import ReservationStatus

class Reservation(Base):
    __tablename__ = "reservations"
    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    companion_ids = Column(JSON, nullable=False, default=list)

    # Inclusive calendar-day range
    pickup_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=False)
    destinations = Column(JSON, nullable=False, default=list)  # ordered, trimmed, unique
    status = Column(String, nullable=False, default=ReservationStatus.ACTIVE.value)

    start_odometer = Column(Integer, nullable=False)
    end_odometer = Column(Integer, nullable=True)  # null on a completed trip = pending mileage

    auto_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    confirmation_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        # overlap checks: vehicle_id + status + date range
        Index("ix_reservations_vehicle_status_dates", "vehicle_id", "status", "pickup_date", "return_date"),
        Index("ix_reservations_driver_status", "driver_id", "status"),
    )
