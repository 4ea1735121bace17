"""
Tests for price change and multi-lever scenario simulation.
"""
from datetime import timedelta
from uuid import uuid4

import pytest

from marginlens.core.errors import NotFound
from marginlens.models.menu import MenuItem
from marginlens.models.order import Channel
from marginlens.models.restaurant import Restaurant
from marginlens.services.baseline import BaselineService
from marginlens.services.simulation import SimulationService

from conftest import NOW


class TestSimulatePriceChange:

    def test_default_elasticity(self, db, make_item, place_order):
        item = make_item(price=100, cost=40)
        place_order(NOW - timedelta(days=2), [(item, 10)])

        sim = SimulationService(db).simulate_price_change(item.id, 0.10, as_of=NOW)

        assert sim.elasticity_source == "default"
        assert sim.elasticity == pytest.approx(1.2)
        assert sim.volume_change_pct == pytest.approx(-12.0)
        assert sim.new_price == pytest.approx(110)
        assert sim.projected_units == pytest.approx(8.8)
        assert sim.projected_revenue == pytest.approx(968)
        assert sim.baseline_profit == pytest.approx(600)
        assert sim.projected_profit == pytest.approx(616)
        assert sim.profit_delta == pytest.approx(16)
        assert sim.risks == []
        # One order: both low-volume penalties, then clamped
        assert sim.confidence == 50

    def test_override_flags_aggressive_change(self, db, make_item, place_order):
        item = make_item(price=100, cost=40, elasticity=0.8)
        place_order(NOW - timedelta(days=2), [(item, 10)])

        sim = SimulationService(db).simulate_price_change(item.id, 0.10, override_elasticity=4.0, as_of=NOW)

        assert sim.elasticity_source == "override"
        assert sim.volume_change_pct == pytest.approx(-40.0)
        assert sim.risks == ["Volume change of -40% may be too aggressive"]

    def test_item_elasticity(self, db, make_item, place_order):
        item = make_item(price=100, cost=40, elasticity=0.8)
        place_order(NOW - timedelta(days=2), [(item, 10)])

        sim = SimulationService(db).simulate_price_change(item.id, -0.10, as_of=NOW)

        assert sim.elasticity_source == "item"
        assert sim.volume_change_pct == pytest.approx(8.0)

    def test_baseline_elasticity_wins_over_item(self, db, make_item, place_order):
        item = make_item(price=100, cost=40, elasticity=0.8)
        for days_back, qty, price in [
            (10, 10, 100), (9, 10, 100), (8, 10, 100), (7, 10, 100),
            (6, 10, 100), (5, 8, 120), (4, 8, 120),
        ]:
            place_order(NOW - timedelta(days=days_back), [(item, qty, price)])
        BaselineService(db).compute_item_baseline(item.id, as_of=NOW)

        sim = SimulationService(db).simulate_price_change(item.id, 0.10, as_of=NOW)

        assert sim.elasticity_source == "baseline"
        assert sim.elasticity == pytest.approx(1.0)

    def test_units_never_negative(self, db, make_item, place_order):
        item = make_item(price=100, cost=40)
        place_order(NOW - timedelta(days=2), [(item, 10)])

        sim = SimulationService(db).simulate_price_change(item.id, 1.0, override_elasticity=1.5, as_of=NOW)

        assert sim.projected_units == 0.0
        assert sim.projected_revenue == 0.0

    def test_confidence_with_volume(self, db, make_item, place_order):
        item = make_item(price=100, cost=40)
        for i in range(120):
            place_order(NOW - timedelta(days=1, minutes=i), [(item, 1)])

        sim = SimulationService(db).simulate_price_change(item.id, 0.05, as_of=NOW)

        assert sim.confidence == 80

    def test_unknown_item(self, db):
        with pytest.raises(NotFound):
            SimulationService(db).simulate_price_change(uuid4(), 0.1, as_of=NOW)


@pytest.fixture
def two_channel_sales(make_item, place_order):
    """One walk-in and one Zomato order: 2000 revenue, 1350 profit."""
    naan = make_item(name="Garlic Naan", price=100, cost=40)
    biryani = make_item(name="Biryani", price=200, cost=50)
    place_order(NOW - timedelta(days=2), [(naan, 10)])
    place_order(NOW - timedelta(days=2, hours=1), [(biryani, 5)], channel=Channel.DELIVERY_ZOMATO)
    return naan, biryani


class TestRunScenario:

    def test_no_levers_is_the_baseline(self, db, restaurant, two_channel_sales):
        result = SimulationService(db).run_scenario(restaurant.id, as_of=NOW)

        assert result.levers == []
        assert result.baseline_orders == 2
        assert result.baseline_revenue == pytest.approx(2000)
        assert result.baseline_profit == pytest.approx(1350)
        assert result.projected_revenue == pytest.approx(2000)
        assert result.orders_delta == 0
        assert result.risks == []
        assert result.confidence == 50

    def test_price_lever_replaces_item_sales(self, db, restaurant, two_channel_sales):
        naan, _ = two_channel_sales

        result = SimulationService(db).run_scenario(restaurant.id, menu_item_id=naan.id, price_change=0.10, as_of=NOW)

        assert result.levers == ["price"]
        assert result.revenue_delta == pytest.approx(-32)
        assert result.profit_delta == pytest.approx(16)
        assert result.projected_revenue == pytest.approx(1968)
        # 10 units become 8.8
        assert result.projected_orders == 1
        assert result.orders_delta == -1

    def test_levers_add_up(self, db, restaurant, two_channel_sales):
        naan, _ = two_channel_sales

        result = SimulationService(db).run_scenario(
            restaurant.id, menu_item_id=naan.id, price_change=0.10, staffing_hours_change=10, as_of=NOW
        )

        assert result.levers == ["price", "staffing"]
        assert result.revenue_delta == pytest.approx(-32 + 200)
        assert result.profit_delta == pytest.approx(16 + 135)
        assert result.projected_orders == 1

    def test_staffing_cut_is_a_risk(self, db, restaurant, two_channel_sales):
        result = SimulationService(db).run_scenario(restaurant.id, staffing_hours_change=-30, as_of=NOW)

        assert result.revenue_delta == pytest.approx(-600)
        assert result.profit_delta == pytest.approx(-405)
        assert result.risks == ["Significant reduction in staffing may impact service quality"]

    def test_channel_mix(self, db, restaurant, two_channel_sales):
        # Both channels hold 50% of revenue today
        result = SimulationService(db).run_scenario(
            restaurant.id, channel_mix={Channel.WALK_IN: 80, Channel.DELIVERY_ZOMATO: 30}, as_of=NOW
        )

        assert result.levers == ["channel_mix"]
        assert result.revenue_delta == pytest.approx(1300 + 800 - 2000)
        assert result.profit_delta == 0
        assert result.risks == ["Channel mix percentages don't sum to 100%"]

    def test_unlisted_channels_drop_out(self, db, restaurant, two_channel_sales):
        result = SimulationService(db).run_scenario(restaurant.id, channel_mix={"walk-in": 100}, as_of=NOW)

        assert result.projected_revenue == pytest.approx(1500)
        assert result.risks == []

    def test_shorter_hours(self, db, restaurant, two_channel_sales):
        result = SimulationService(db).run_scenario(restaurant.id, close_hour=20, as_of=NOW)

        assert result.levers == ["hours"]
        assert result.revenue_delta == pytest.approx(-400)
        assert result.profit_delta == pytest.approx(-270)
        assert result.projected_orders == 2
        assert result.risks == ["Reducing hours may impact customer convenience"]

    def test_longer_hours(self, db, restaurant, two_channel_sales):
        result = SimulationService(db).run_scenario(restaurant.id, open_hour=10, close_hour=24, as_of=NOW)

        assert result.revenue_delta == pytest.approx(200)
        assert result.profit_delta == pytest.approx(112.5)
        assert result.risks == ["Extended hours may have lower efficiency"]

    def test_many_risks_lower_confidence(self, db, restaurant, make_item, place_order):
        item = make_item(price=100, cost=40)
        for i in range(120):
            place_order(NOW - timedelta(days=1, minutes=i), [(item, 1)])

        result = SimulationService(db).run_scenario(
            restaurant.id,
            menu_item_id=item.id,
            price_change=0.10,
            override_elasticity=4.0,
            staffing_hours_change=-30,
            close_hour=20,
            as_of=NOW,
        )

        assert len(result.risks) == 3
        assert result.confidence == 70

    @pytest.mark.parametrize("kwargs", [
        {"price_change": 0.1},
        {"open_hour": 12, "close_hour": 11},
        {"open_hour": 23},
        {"channel_mix": {"fax": 100}},
    ])
    def test_invalid_levers(self, db, restaurant, kwargs):
        with pytest.raises(ValueError):
            SimulationService(db).run_scenario(restaurant.id, as_of=NOW, **kwargs)

    def test_item_of_other_restaurant(self, db, restaurant):
        other = Restaurant(name="Elsewhere")
        db.add(other)
        db.commit()
        item = MenuItem(restaurant_id=other.id, name="Pho", price=300, cost_price=100)
        db.add(item)
        db.commit()

        with pytest.raises(NotFound):
            SimulationService(db).run_scenario(restaurant.id, menu_item_id=item.id, price_change=0.1, as_of=NOW)

    def test_unknown_restaurant(self, db):
        with pytest.raises(NotFound):
            SimulationService(db).run_scenario(uuid4(), staffing_hours_change=5, as_of=NOW)
