"""Customer and vehicle records.

CRUD for these lives outside the workflow engine; the engine only reads the
customer's contact details.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from shopinspect.db.base import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    shop = relationship("Shop", back_populates="customers")
    vehicles = relationship("Vehicle", back_populates="customer")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Customer {self.full_name}>"


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    shop_id = Column(Uuid, ForeignKey("shops.id"), nullable=False, index=True)
    customer_id = Column(Uuid, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)
    vin = Column(String(17), nullable=True, index=True)
    year = Column(Integer, nullable=True)
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    customer = relationship("Customer", back_populates="vehicles")

    @property
    def description(self) -> str:
        return " ".join(str(p) for p in (self.year, self.make, self.model) if p)

    def __repr__(self) -> str:
        return f"<Vehicle {self.description or self.vin}>"
