"""
Tests for per-item baselines: sample requirements, statistics, confidence
and version numbering.
"""
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from marginlens.core.errors import ComputationFailure, InsufficientData, NotFound
from marginlens.models.baseline import ItemBaseline
from marginlens.models.order import OrderStatus
from marginlens.services.baseline import BaselineService
from marginlens.services.sales import SalesQueryService

from conftest import NOW


def sell_daily(place_order, item, quantities, first_day_back=1):
    """One order per day, walking back from NOW."""
    for offset, qty in enumerate(quantities):
        place_order(NOW - timedelta(days=first_day_back + offset), [(item, qty)])


class TestComputeBaseline:

    def test_four_days_is_insufficient(self, db, make_item, place_order):
        item = make_item()
        sell_daily(place_order, item, [5, 5, 5, 5])

        result = BaselineService(db).compute_item_baseline(item.id, as_of=NOW)

        assert isinstance(result, InsufficientData)
        assert result.required == 7
        assert result.available == 4
        assert db.execute(select(ItemBaseline)).scalars().all() == []

    def test_stable_sales(self, db, make_item, place_order):
        item = make_item(price=500)
        sell_daily(place_order, item, [5] * 10)

        baseline = BaselineService(db).compute_item_baseline(item.id, as_of=NOW)

        assert isinstance(baseline, ItemBaseline)
        assert baseline.version == 1
        assert baseline.sample_size == 10
        assert baseline.avg_daily_quantity == pytest.approx(5.0)
        assert baseline.std_dev_quantity == pytest.approx(0.0)
        assert baseline.avg_daily_revenue == pytest.approx(2500.0)
        # CV 0, 10 of 30 days
        assert baseline.confidence_score == pytest.approx(10 / 30)
        assert baseline.seasonality_index is None

    def test_confidence_penalises_variation(self, db, make_item, place_order):
        item = make_item()
        sell_daily(place_order, item, [4, 6] * 5)

        baseline = BaselineService(db).compute_item_baseline(item.id, as_of=NOW)

        assert baseline.avg_daily_quantity == pytest.approx(5.0)
        assert baseline.std_dev_quantity == pytest.approx(1.0)
        # (1 - 0.2) x 10/30
        assert baseline.confidence_score == pytest.approx(0.8 / 3)
        assert 0.0 <= baseline.confidence_score <= 1.0

    def test_full_window_caps_sample_factor(self, db, make_item, place_order):
        item = make_item()
        sell_daily(place_order, item, [5] * 29)

        baseline = BaselineService(db).compute_item_baseline(item.id, lookback_days=30, as_of=NOW)

        assert baseline.sample_size == 29
        assert baseline.confidence_score == pytest.approx(29 / 30)

    def test_versions_increase_per_item(self, db, make_item, place_order):
        item = make_item()
        other = make_item(name="Dal Makhani")
        sell_daily(place_order, item, [5] * 8)
        sell_daily(place_order, other, [3] * 8)
        service = BaselineService(db)

        first = service.compute_item_baseline(item.id, as_of=NOW)
        second = service.compute_item_baseline(item.id, as_of=NOW)
        other_first = service.compute_item_baseline(other.id, as_of=NOW)

        assert first.version == 1
        assert second.version == 2
        assert other_first.version == 1
        assert service.get_latest_baseline(item.id).version == 2

    def test_only_completed_orders_count(self, db, make_item, place_order):
        item = make_item()
        sell_daily(place_order, item, [5] * 6)
        for days_back in (7, 8, 9):
            place_order(NOW - timedelta(days=days_back), [(item, 5)], status=OrderStatus.CANCELLED)

        result = BaselineService(db).compute_item_baseline(item.id, as_of=NOW)

        assert isinstance(result, InsufficientData)
        assert result.available == 6

    def test_elasticity_from_price_moves(self, db, make_item, place_order):
        item = make_item(price=100)
        # Oldest first: five days at 100, then 120 with fewer sales
        for days_back, qty, price in [
            (10, 10, 100), (9, 10, 100), (8, 10, 100), (7, 10, 100),
            (6, 10, 100), (5, 8, 120), (4, 8, 120),
        ]:
            place_order(NOW - timedelta(days=days_back), [(item, qty, price)])

        baseline = BaselineService(db).compute_item_baseline(item.id, as_of=NOW)

        assert baseline.price_elasticity == pytest.approx(-1.0)

    def test_unknown_item(self, db):
        with pytest.raises(NotFound):
            BaselineService(db).compute_item_baseline(uuid4(), as_of=NOW)

    def test_store_failure_is_not_insufficient_data(self, db, make_item, place_order, monkeypatch):
        item = make_item()
        sell_daily(place_order, item, [5] * 10)

        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(SalesQueryService, "item_daily_series", broken)

        with pytest.raises(ComputationFailure):
            BaselineService(db).compute_item_baseline(item.id, as_of=NOW)

        monkeypatch.undo()
        assert db.execute(select(ItemBaseline)).scalars().all() == []


class TestBaselineComparison:

    def test_no_baseline(self, db, make_item):
        item = make_item()
        assert BaselineService(db).get_baseline_comparison(item.id, 5) is None

    def test_above_baseline(self, db, make_item, place_order):
        item = make_item()
        sell_daily(place_order, item, [4, 6] * 5)
        service = BaselineService(db)
        service.compute_item_baseline(item.id, as_of=NOW)

        comparison = service.get_baseline_comparison(item.id, 7)

        assert comparison.deviation_sigma == pytest.approx(2.0)
        assert comparison.performance == "above"
        assert comparison.baseline_version == 1

    def test_within_half_sigma_is_normal(self, db, make_item, place_order):
        item = make_item()
        sell_daily(place_order, item, [4, 6] * 5)
        service = BaselineService(db)
        service.compute_item_baseline(item.id, as_of=NOW)

        assert service.get_baseline_comparison(item.id, 5.5).performance == "normal"
        assert service.get_baseline_comparison(item.id, 4).performance == "below"

    def test_flat_baseline_has_zero_sigma(self, db, make_item, place_order):
        item = make_item()
        sell_daily(place_order, item, [5] * 7)
        service = BaselineService(db)
        service.compute_item_baseline(item.id, as_of=NOW)

        comparison = service.get_baseline_comparison(item.id, 50)

        assert comparison.deviation_sigma == 0.0
        assert comparison.performance == "normal"
