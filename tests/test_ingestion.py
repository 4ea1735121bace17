"""
Tests for order ingestion and order status lifecycle.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from marginlens.core.errors import InvalidTransition, NotFound
from marginlens.models.menu import MenuItem
from marginlens.models.order import Channel, Order, OrderStatus
from marginlens.models.restaurant import Restaurant
from marginlens.services.ingestion import OrderIngestionService, OrderLine
from marginlens.services.sales import SalesQueryService

from conftest import NOW


class TestRecordOrder:

    def test_totals_and_frozen_prices(self, db, restaurant, make_item):
        naan = make_item(name="Garlic Naan", price=80, cost=20)
        curry = make_item(name="Butter Chicken", price=450, cost=180)

        order = OrderIngestionService(db).record_order(
            restaurant_id=restaurant.id,
            pos_order_id="A-1",
            ordered_at=NOW,
            channel=Channel.BOOKING,
            lines=[OrderLine(naan.id, 3), OrderLine(curry.id, 1, Decimal("420"))],
            taxes=Decimal("25.50"),
        )

        assert order.subtotal == Decimal("660")
        assert order.total_amount == Decimal("685.50")
        assert order.channel == "booking"
        assert order.status == "completed"
        prices = {line.menu_item_id: line.unit_price for line in order.items}
        assert prices[naan.id] == Decimal("80")
        assert prices[curry.id] == Decimal("420")

    def test_menu_price_change_keeps_history(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        place_order(NOW - timedelta(days=1), [(item, 5)])

        item.price = Decimal("150")
        db.commit()

        revenue = SalesQueryService(db).revenue(restaurant.id, NOW - timedelta(days=7), NOW)
        assert revenue == pytest.approx(500)

    def test_duplicate_pos_order_is_idempotent(self, db, restaurant, make_item, place_order):
        item = make_item()

        first = place_order(NOW, [(item, 1)], pos_order_id="DUP-1")
        second = place_order(NOW, [(item, 4)], pos_order_id="DUP-1")

        assert second.id == first.id
        assert db.query(Order).count() == 1

    def test_empty_order(self, db, restaurant):
        with pytest.raises(ValueError):
            OrderIngestionService(db).record_order(restaurant.id, "E-1", NOW, Channel.WALK_IN, [])

    @pytest.mark.parametrize("quantity,price", [(0, None), (-2, None), (1, Decimal("-5"))])
    def test_invalid_lines(self, db, restaurant, make_item, quantity, price):
        item = make_item()
        with pytest.raises(ValueError):
            OrderIngestionService(db).record_order(
                restaurant.id, "BAD-1", NOW, Channel.WALK_IN, [OrderLine(item.id, quantity, price)]
            )
        assert db.query(Order).count() == 0

    def test_item_from_another_restaurant(self, db, restaurant):
        other = Restaurant(name="Elsewhere")
        db.add(other)
        db.commit()
        foreign = MenuItem(restaurant_id=other.id, name="Pho", price=Decimal("300"), cost_price=Decimal("90"))
        db.add(foreign)
        db.commit()

        with pytest.raises(NotFound):
            OrderIngestionService(db).record_order(
                restaurant.id, "X-1", NOW, Channel.WALK_IN, [OrderLine(foreign.id, 1)]
            )

    def test_unknown_channel(self, db, restaurant, make_item):
        item = make_item()
        with pytest.raises(ValueError):
            OrderIngestionService(db).record_order(
                restaurant.id, "C-1", NOW, "carrier-pigeon", [OrderLine(item.id, 1)]
            )


class TestOrderStatus:

    def test_forward_moves(self, db, restaurant, make_item, place_order):
        item = make_item()
        order = place_order(NOW, [(item, 1)], status=OrderStatus.PENDING)
        service = OrderIngestionService(db)

        service.update_order_status(order.id, OrderStatus.PREPARING)
        order = service.update_order_status(order.id, OrderStatus.COMPLETED)

        assert order.status == "completed"

    def test_backwards_move_rejected(self, db, restaurant, make_item, place_order):
        item = make_item()
        order = place_order(NOW, [(item, 1)])

        with pytest.raises(InvalidTransition):
            OrderIngestionService(db).update_order_status(order.id, OrderStatus.PREPARING)

        db.refresh(order)
        assert order.status == "completed"

    def test_cancelled_is_terminal(self, db, restaurant, make_item, place_order):
        item = make_item()
        order = place_order(NOW, [(item, 1)], status=OrderStatus.READY)
        service = OrderIngestionService(db)

        service.update_order_status(order.id, OrderStatus.CANCELLED)

        with pytest.raises(InvalidTransition):
            service.update_order_status(order.id, OrderStatus.COMPLETED)

    def test_only_completed_orders_reach_analytics(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        order = place_order(NOW - timedelta(hours=2), [(item, 2)], status=OrderStatus.READY)
        sales = SalesQueryService(db)

        assert sales.count_completed_orders(restaurant.id, NOW - timedelta(days=1), NOW) == 0

        OrderIngestionService(db).update_order_status(order.id, OrderStatus.COMPLETED)

        assert sales.count_completed_orders(restaurant.id, NOW - timedelta(days=1), NOW) == 1
        assert sales.revenue(restaurant.id, NOW - timedelta(days=1), NOW) == pytest.approx(200)
