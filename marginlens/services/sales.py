"""
Read contract over the transaction store.

Every query here is restricted to completed orders; pending, in-progress
and cancelled orders never reach analytics. Revenue is always computed from
OrderItem.unit_price (price at time of sale), never from the current
MenuItem price.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

import pandas as pd
from sqlalchemy import select, func
from sqlalchemy.orm import Session, selectinload

from marginlens.core.business_day import get_business_date
from marginlens.models.menu import MenuItem
from marginlens.models.order import Order, OrderItem, OrderStatus
from marginlens.models.restaurant import Restaurant
from marginlens.services.statistics import DailyPoint


@dataclass
class ItemPeriodSales:
    """Units and revenue for one item over a period."""
    quantity: float
    revenue: float

    @property
    def avg_price(self) -> float:
        return self.revenue / self.quantity if self.quantity else 0.0


@dataclass
class PeriodSales:
    """All item sales for one period, plus the number of orders behind them."""
    order_count: int
    items: Dict[UUID, ItemPeriodSales]

    @property
    def total_revenue(self) -> float:
        return sum(s.revenue for s in self.items.values())


def completed_in_window(start: datetime, end: datetime):
    """Filter clauses for completed orders with start <= ordered_at < end."""
    return (
        Order.status == OrderStatus.COMPLETED.value,
        Order.ordered_at >= start,
        Order.ordered_at < end,
    )


class SalesQueryService:
    """Completed-order queries shared by the analytics engines."""

    def __init__(self, db: Session):
        self.db = db

    def get_restaurant(self, restaurant_id: UUID) -> Optional[Restaurant]:
        return self.db.get(Restaurant, restaurant_id)

    def get_menu_item(self, menu_item_id: UUID) -> Optional[MenuItem]:
        return self.db.get(MenuItem, menu_item_id)

    def item_daily_series(
        self,
        menu_item_id: UUID,
        start: datetime,
        end: datetime,
        restaurant_timezone: Optional[str] = None
    ) -> List[DailyPoint]:
        """
        Daily quantity/revenue/average price for one item, grouped by business
        date and sorted chronologically. Days without sales are absent.
        """
        stmt = (
            select(Order.ordered_at, OrderItem.quantity, OrderItem.unit_price)
            .join(Order, OrderItem.order_id == Order.id)
            .where(
                OrderItem.menu_item_id == menu_item_id,
                *completed_in_window(start, end)
            )
        )
        rows = self.db.execute(stmt).all()
        if not rows:
            return []

        df = pd.DataFrame([
            {
                'date': get_business_date(r.ordered_at, restaurant_timezone),
                'quantity': float(r.quantity),
                'revenue': float(r.quantity) * float(r.unit_price),
            }
            for r in rows
        ])

        daily = df.groupby('date', sort=True)[['quantity', 'revenue']].sum()
        daily['price'] = daily['revenue'] / daily['quantity'].where(daily['quantity'] > 0)
        daily['price'] = daily['price'].fillna(0.0)

        return [
            DailyPoint(quantity=float(r.quantity), revenue=float(r.revenue), price=float(r.price))
            for r in daily.itertuples()
        ]

    def period_sales(
        self,
        restaurant_id: UUID,
        start: datetime,
        end: datetime,
        menu_item_id: Optional[UUID] = None
    ) -> PeriodSales:
        """Per-item units and revenue for a restaurant (or a single item) in [start, end)."""
        filters = [Order.restaurant_id == restaurant_id, *completed_in_window(start, end)]
        if menu_item_id is not None:
            filters.append(OrderItem.menu_item_id == menu_item_id)

        stmt = (
            select(
                OrderItem.menu_item_id,
                func.sum(OrderItem.quantity).label('quantity'),
                func.sum(OrderItem.quantity * OrderItem.unit_price).label('revenue'),
            )
            .join(Order, OrderItem.order_id == Order.id)
            .where(*filters)
            .group_by(OrderItem.menu_item_id)
        )
        items = {
            r.menu_item_id: ItemPeriodSales(
                quantity=float(r.quantity or 0),
                revenue=float(r.revenue or 0),
            )
            for r in self.db.execute(stmt).all()
        }

        count_stmt = (
            select(func.count(func.distinct(Order.id)))
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(*filters)
        )
        order_count = self.db.execute(count_stmt).scalar() or 0

        return PeriodSales(order_count=int(order_count), items=items)

    def revenue(
        self,
        restaurant_id: UUID,
        start: datetime,
        end: datetime,
        menu_item_id: Optional[UUID] = None
    ) -> float:
        return self.period_sales(restaurant_id, start, end, menu_item_id).total_revenue

    def completed_orders(
        self,
        restaurant_id: UUID,
        start: datetime,
        end: datetime,
        with_items: bool = False
    ) -> List[Order]:
        """Completed orders, oldest first; with_items eager-loads lines and their menu items."""
        stmt = (
            select(Order)
            .where(Order.restaurant_id == restaurant_id, *completed_in_window(start, end))
            .order_by(Order.ordered_at)
        )
        if with_items:
            stmt = stmt.options(selectinload(Order.items).selectinload(OrderItem.menu_item))
        return list(self.db.execute(stmt).scalars().all())

    def count_completed_orders(self, restaurant_id: UUID, start: datetime, end: datetime) -> int:
        stmt = select(func.count(Order.id)).where(
            Order.restaurant_id == restaurant_id, *completed_in_window(start, end)
        )
        return int(self.db.execute(stmt).scalar() or 0)

    def item_order_count(self, menu_item_id: UUID, start: datetime, end: datetime) -> int:
        """Units of an item sold in the window."""
        stmt = (
            select(func.coalesce(func.sum(OrderItem.quantity), 0))
            .join(Order, OrderItem.order_id == Order.id)
            .where(OrderItem.menu_item_id == menu_item_id, *completed_in_window(start, end))
        )
        return int(self.db.execute(stmt).scalar() or 0)

    def item_sale_lines(self, restaurant_id: UUID, end: datetime) -> List:
        """Every completed order line before end as (menu_item_id, ordered_at, quantity, unit_price) rows."""
        stmt = (
            select(OrderItem.menu_item_id, Order.ordered_at, OrderItem.quantity, OrderItem.unit_price)
            .join(Order, OrderItem.order_id == Order.id)
            .where(
                Order.restaurant_id == restaurant_id,
                Order.status == OrderStatus.COMPLETED.value,
                Order.ordered_at < end,
            )
            .order_by(Order.ordered_at)
        )
        return list(self.db.execute(stmt).all())
