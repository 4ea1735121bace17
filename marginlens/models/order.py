"""
Order and OrderItem models for storing point-of-sale data.
"""
import uuid
from enum import Enum
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Integer, Uuid, func, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from marginlens.db.base import Base


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Channel(str, Enum):
    WALK_IN = "walk-in"
    BOOKING = "booking"
    DELIVERY_DIRECT = "delivery-direct"
    DELIVERY_ZOMATO = "delivery-zomato"
    DELIVERY_SWIGGY = "delivery-swiggy"
    DELIVERY_DOORDASH = "delivery-doordash"

    @property
    def is_aggregator(self) -> bool:
        return self.value.startswith("delivery-") and self is not Channel.DELIVERY_DIRECT


class Order(Base):
    """A customer order (receipt). Only completed orders feed analytics."""
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    pos_order_id = Column(String(100), nullable=False)
    ordered_at = Column(DateTime, nullable=False)  # naive UTC
    channel = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.COMPLETED.value)
    server_id = Column(Uuid, ForeignKey("servers.id", ondelete="SET NULL"), nullable=True)
    table_number = Column(String(20), nullable=True)
    guest_count = Column(Integer, nullable=True)
    subtotal = Column(Numeric(10, 2), nullable=False)
    taxes = Column(Numeric(10, 2), nullable=False, default=0)
    fees = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    restaurant = relationship("Restaurant", back_populates="orders")
    server = relationship("Server", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('restaurant_id', 'pos_order_id', name='uq_orders_restaurant_pos_order'),
        Index('idx_orders_restaurant_ordered_at', 'restaurant_id', 'ordered_at'),
    )


class OrderItem(Base):
    """A line item within an order. Price is frozen at time of sale."""
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    order = relationship("Order", back_populates="items")
    menu_item = relationship("MenuItem", back_populates="order_items")

    __table_args__ = (
        Index('idx_order_items_menu_item', 'menu_item_id'),
    )
