from sqlalchemy import Column, Integer, String, Boolean, DateTime
from core.db import Base, utcnow

class Driver(Base):
    __tablename__ = "drivers"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)  # display key used for lookups
    email = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)  # drivers are deactivated, never deleted
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
