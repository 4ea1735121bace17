"""
Test configuration and fixtures.
"""
import os
from datetime import datetime
from decimal import Decimal
from itertools import count
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Set test database URL before importing app
os.environ["DATABASE_URL"] = "sqlite://"

from marginlens.main import app
from marginlens.db.base import Base
from marginlens.db.session import get_db
from marginlens.models.menu import MenuItem, Server
from marginlens.models.order import Channel, OrderStatus
from marginlens.models.restaurant import Restaurant
from marginlens.services.ingestion import OrderIngestionService, OrderLine


# Friday noon, naive UTC
NOW = datetime(2024, 3, 15, 12, 0)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema and session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create test client with database session override."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def restaurant(db: Session) -> Restaurant:
    restaurant = Restaurant(name="Test Bistro", timezone="UTC", seat_count=10)
    db.add(restaurant)
    db.commit()
    db.refresh(restaurant)
    return restaurant


@pytest.fixture
def make_item(db: Session, restaurant: Restaurant):
    """Factory for menu items on the test restaurant."""
    def _make(name="Paneer Tikka", price=500, cost=200, category="main", prep_time=None, elasticity=None,
              launch_date=None):
        item = MenuItem(
            restaurant_id=restaurant.id,
            name=name,
            category=category,
            price=Decimal(str(price)),
            cost_price=Decimal(str(cost)),
            prep_time_minutes=prep_time,
            price_elasticity=Decimal(str(elasticity)) if elasticity is not None else None,
            launch_date=launch_date,
        )
        db.add(item)
        db.commit()
        db.refresh(item)
        return item
    return _make


@pytest.fixture
def place_order(db: Session, restaurant: Restaurant):
    """
    Factory for orders through the ingestion service.

    Lines are (item, quantity) or (item, quantity, unit_price).
    """
    ids = count(1)

    def _place(ordered_at, lines, channel=Channel.WALK_IN, status=OrderStatus.COMPLETED, pos_order_id=None,
               server=None):
        order_lines = [
            OrderLine(
                menu_item_id=line[0].id,
                quantity=line[1],
                unit_price=Decimal(str(line[2])) if len(line) > 2 else None,
            )
            for line in lines
        ]
        return OrderIngestionService(db).record_order(
            restaurant_id=restaurant.id,
            pos_order_id=pos_order_id or f"POS-{next(ids):05d}",
            ordered_at=ordered_at,
            channel=channel,
            lines=order_lines,
            status=status,
            server_id=server.id if server is not None else None,
        )
    return _place


@pytest.fixture
def make_server(db: Session, restaurant: Restaurant):
    def _make(name="Asha", is_active=True):
        server = Server(restaurant_id=restaurant.id, name=name, is_active=is_active)
        db.add(server)
        db.commit()
        db.refresh(server)
        return server
    return _make
