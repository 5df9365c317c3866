"""Factory functions for creating test database records.

Each factory creates a model instance, adds it to the session, and flushes
so that database-generated fields (id, created_at, etc.) are populated.
All fields have sensible defaults but can be overridden via keyword arguments.

Usage::

    from tests.factories import create_shop, create_inspection

    def test_something(db_session):
        shop = create_shop(db_session, name="Main Street Auto")
        inspection = create_inspection(db_session, shop=shop)
        assert inspection.workflow_state == "draft"
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from shopinspect.db.models import (
    Customer,
    Inspection,
    InspectionItem,
    InspectionStateHistory,
    Shop,
    User,
    Vehicle,
)


_counter = 0


def _next_id() -> int:
    """Return a monotonically increasing integer for unique default values."""
    global _counter
    _counter += 1
    return _counter


# ---------------------------------------------------------------------------
# Shop
# ---------------------------------------------------------------------------


def create_shop(
    session: Session,
    *,
    name: Optional[str] = None,
    timezone: str = "UTC",
) -> Shop:
    n = _next_id()
    shop = Shop(name=name or f"Test Shop {n}", timezone=timezone, settings={})
    session.add(shop)
    session.flush()
    return shop


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


def create_user(
    session: Session,
    *,
    shop: Optional[Shop] = None,
    role: str = "technician",
    email: Optional[str] = None,
    name: Optional[str] = None,
    is_active: bool = True,
) -> User:
    if shop is None:
        shop = create_shop(session)
    n = _next_id()
    user = User(
        shop_id=shop.id,
        role=role,
        email=email or f"user-{n}@example.com",
        name=name or f"Test User {n}",
        is_active=is_active,
    )
    session.add(user)
    session.flush()
    return user


# ---------------------------------------------------------------------------
# Customer / Vehicle
# ---------------------------------------------------------------------------


def create_customer(
    session: Session,
    *,
    shop: Optional[Shop] = None,
    first_name: str = "Casey",
    last_name: str = "Customer",
    phone: Optional[str] = "+15555550123",
) -> Customer:
    if shop is None:
        shop = create_shop(session)
    customer = Customer(shop_id=shop.id, first_name=first_name, last_name=last_name, phone=phone)
    session.add(customer)
    session.flush()
    return customer


def create_vehicle(
    session: Session,
    *,
    shop: Optional[Shop] = None,
    customer: Optional[Customer] = None,
    year: int = 2019,
    make: str = "Honda",
    model: str = "Civic",
) -> Vehicle:
    if shop is None:
        shop = create_shop(session)
    vehicle = Vehicle(
        shop_id=shop.id,
        customer_id=customer.id if customer else None,
        year=year,
        make=make,
        model=model,
    )
    session.add(vehicle)
    session.flush()
    return vehicle


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


def create_inspection(
    session: Session,
    *,
    shop: Optional[Shop] = None,
    vehicle: Optional[Vehicle] = None,
    technician: Optional[User] = None,
    workflow_state: str = "draft",
    version: int = 1,
    state_changed_at: Optional[datetime] = None,
    deleted_at: Optional[datetime] = None,
    rejection_reason: Optional[str] = None,
) -> Inspection:
    if shop is None:
        shop = create_shop(session)
    inspection = Inspection(
        shop_id=shop.id,
        vehicle_id=vehicle.id if vehicle else None,
        technician_id=technician.id if technician else None,
        created_by=technician.id if technician else None,
        workflow_state=workflow_state,
        version=version,
        state_changed_at=state_changed_at or datetime.utcnow(),
        deleted_at=deleted_at,
        rejection_reason=rejection_reason,
    )
    session.add(inspection)
    session.flush()
    return inspection


def create_item(
    session: Session,
    *,
    inspection: Inspection,
    category: str = "brakes",
    component: Optional[str] = None,
    condition: Optional[str] = "good",
) -> InspectionItem:
    n = _next_id()
    item = InspectionItem(
        inspection_id=inspection.id,
        category=category,
        component=component or f"component-{n}",
        condition=condition,
    )
    session.add(item)
    session.flush()
    return item


def create_history_entry(
    session: Session,
    *,
    inspection: Inspection,
    from_state: Optional[str],
    to_state: str,
    changed_at: datetime,
    changed_by: Optional[User] = None,
    reason: Optional[str] = None,
    version: Optional[int] = None,
) -> InspectionStateHistory:
    entry = InspectionStateHistory(
        inspection_id=inspection.id,
        from_state=from_state,
        to_state=to_state,
        changed_by=changed_by.id if changed_by else None,
        change_reason=reason,
        extra_data={},
        validation_passed=True,
        validation_errors=[],
        changed_at=changed_at,
        version=version,
    )
    session.add(entry)
    session.flush()
    return entry
