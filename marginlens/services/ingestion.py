"""
Order ingestion: the write side of the transaction store.

Orders are appended once and never edited. The unit price of each line is
frozen at the time of sale, so later menu price changes leave historical
revenue and margin untouched. Only the order status moves afterwards.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from marginlens.core.errors import InvalidTransition, NotFound, store_guard
from marginlens.models.menu import MenuItem
from marginlens.models.order import Channel, Order, OrderItem, OrderStatus
from marginlens.models.restaurant import Restaurant

logger = logging.getLogger(__name__)

# Forward-only lifecycle; steps may be skipped
STATUS_SEQUENCE = [
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
]


@dataclass
class OrderLine:
    """One line of an incoming order."""
    menu_item_id: UUID
    quantity: int
    unit_price: Optional[Decimal] = None  # Defaults to the current menu price


class OrderIngestionService:
    """Appends POS orders with their line items."""

    def __init__(self, db: Session):
        self.db = db

    def record_order(
        self,
        restaurant_id: UUID,
        pos_order_id: str,
        ordered_at: datetime,
        channel: Channel,
        lines: List[OrderLine],
        status: OrderStatus = OrderStatus.COMPLETED,
        taxes: Decimal = Decimal("0"),
        fees: Decimal = Decimal("0"),
        server_id: Optional[UUID] = None,
        table_number: Optional[str] = None,
        guest_count: Optional[int] = None,
    ) -> Order:
        """
        Store an order, or return the existing one for a repeated pos_order_id.

        Args:
            ordered_at: Naive UTC timestamp of the sale
            lines: At least one line; quantities must be positive

        Raises:
            ValueError: empty order, non-positive quantity or negative price
            NotFound: unknown restaurant or menu item
        """
        if not lines:
            raise ValueError("An order needs at least one line item")
        channel = Channel(channel)
        status = OrderStatus(status)

        with store_guard(self.db, "record_order"):
            existing = self.db.execute(
                select(Order).where(
                    Order.restaurant_id == restaurant_id,
                    Order.pos_order_id == pos_order_id,
                )
            ).scalar_one_or_none()
            if existing is not None:
                logger.info(f"Skipping duplicate POS order {pos_order_id}")
                return existing

            if self.db.get(Restaurant, restaurant_id) is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")

            item_ids = {line.menu_item_id for line in lines}
            menu_items: Dict[UUID, MenuItem] = {
                item.id: item
                for item in self.db.execute(
                    select(MenuItem).where(
                        MenuItem.id.in_(item_ids),
                        MenuItem.restaurant_id == restaurant_id,
                    )
                ).scalars()
            }

            order_items = []
            subtotal = Decimal("0")
            for line in lines:
                item = menu_items.get(line.menu_item_id)
                if item is None:
                    raise NotFound(f"Menu item {line.menu_item_id} not found")
                if line.quantity <= 0:
                    raise ValueError(f"Quantity must be positive (got {line.quantity})")

                unit_price = Decimal(str(line.unit_price)) if line.unit_price is not None else Decimal(item.price)
                if unit_price < 0:
                    raise ValueError(f"Unit price must not be negative (got {unit_price})")

                line_total = unit_price * line.quantity
                subtotal += line_total
                order_items.append(OrderItem(
                    menu_item_id=item.id,
                    quantity=line.quantity,
                    unit_price=unit_price,
                    line_total=line_total,
                ))

            order = Order(
                restaurant_id=restaurant_id,
                pos_order_id=pos_order_id,
                ordered_at=ordered_at,
                channel=channel.value,
                status=status.value,
                server_id=server_id,
                table_number=table_number,
                guest_count=guest_count,
                subtotal=subtotal,
                taxes=taxes,
                fees=fees,
                total_amount=subtotal + taxes + fees,
                items=order_items,
            )
            self.db.add(order)
            self.db.commit()
            self.db.refresh(order)

        logger.debug(f"Recorded order {pos_order_id} ({len(order_items)} lines, {order.total_amount})")
        return order

    def update_order_status(self, order_id: UUID, status: OrderStatus) -> Order:
        """Advance an order through its lifecycle or void it."""
        status = OrderStatus(status)

        with store_guard(self.db, "update_order_status"):
            order = self.db.execute(
                select(Order).where(Order.id == order_id).with_for_update()
            ).scalar_one_or_none()
            if order is None:
                raise NotFound(f"Order {order_id} not found")

            current = OrderStatus(order.status)
            if not self._allowed(current, status):
                self.db.rollback()
                raise InvalidTransition(current.value, status.value)

            order.status = status.value
            self.db.commit()
            self.db.refresh(order)

        logger.info(f"Order {order.pos_order_id} moved {current.value} -> {status.value}")
        return order

    @staticmethod
    def _allowed(current: OrderStatus, requested: OrderStatus) -> bool:
        if current == OrderStatus.CANCELLED:
            return False
        if requested == OrderStatus.CANCELLED:
            return True
        return STATUS_SEQUENCE.index(requested) > STATUS_SEQUENCE.index(current)
