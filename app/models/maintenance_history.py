from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, ForeignKey
from core.db import Base, utcnow

class MaintenanceHistory(Base):
    __tablename__ = "maintenance_history"
    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    kind = Column(String, nullable=False)  # 'revision' | 'service'
    odometer = Column(Integer, nullable=False)
    performed_on = Column(Date, nullable=False)
    next_odometer = Column(Integer, nullable=False)
    next_date = Column(Date, nullable=True)
    description = Column(String, nullable=True)
    cost = Column(Numeric(10, 2), nullable=True)
    performed_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
