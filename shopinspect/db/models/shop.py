import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Uuid
from sqlalchemy.orm import relationship

from shopinspect.db.base import Base


class Shop(Base):
    __tablename__ = "shops"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    users = relationship("User", back_populates="shop")
    customers = relationship("Customer", back_populates="shop")
    inspections = relationship("Inspection", back_populates="shop")
