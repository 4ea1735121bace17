"""
Menu items and the staff who sell them.
"""
import uuid
from sqlalchemy import Column, String, Integer, Boolean, Numeric, DateTime, Date, ForeignKey, Uuid, func
from sqlalchemy.orm import relationship

from marginlens.db.base import Base


class MenuItem(Base):
    """
    A dish or product sold by the restaurant.

    `price` and `cost_price` are the owner's current values and may be edited
    at any time. Historical revenue is always computed from
    OrderItem.unit_price, never from this row.
    """
    __tablename__ = "menu_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False, default="main")  # appetizer, main, dessert, beverage
    cost_price = Column(Numeric(10, 2), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    price_elasticity = Column(Numeric(5, 3), nullable=True)  # NULL = unmeasured, use DEFAULT_PRICE_ELASTICITY
    launch_date = Column(Date, nullable=True)
    prep_time_minutes = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    restaurant = relationship("Restaurant", back_populates="menu_items")
    order_items = relationship("OrderItem", back_populates="menu_item")
    baselines = relationship("ItemBaseline", back_populates="menu_item", cascade="all, delete-orphan")


class Server(Base):
    """A member of floor staff who takes orders."""
    __tablename__ = "servers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    restaurant = relationship("Restaurant", back_populates="servers")
    orders = relationship("Order", back_populates="server")
