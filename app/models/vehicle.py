from sqlalchemy import Column, Integer, String, Date, DateTime
from core.db import Base, utcnow
from models.enums import VehicleStatus

class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, index=True)
    plate = Column(String, unique=True, nullable=False)
    model = Column(String, nullable=True)
    brand = Column(String, nullable=True)
    color = Column(String, nullable=True)
    year = Column(Integer, nullable=True)

    current_odometer = Column(Integer, nullable=False, default=0)  # km, never decreases
    status = Column(String, nullable=False, default=VehicleStatus.AVAILABLE.value, index=True)
    available_from = Column(Date, nullable=True)  # end of post-trip cooldown
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    # Maintenance configuration
    last_service_odometer = Column(Integer, nullable=True)
    next_service_odometer = Column(Integer, nullable=False, default=10000)
    next_revision_odometer = Column(Integer, nullable=False, default=10000)
    service_margin_km = Column(Integer, nullable=False, default=500)
    last_revision_date = Column(Date, nullable=True)
    next_revision_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)
