"""
Tests for revenue decomposition and explainable insights.
"""
import random
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from marginlens.core.errors import ComputationFailure, InsufficientData, NotFound
from marginlens.models.insight import Insight
from marginlens.models.order import OrderStatus
from marginlens.services.baseline import BaselineService
from marginlens.services.insights import (
    MIX_FACTOR,
    PRICE_FACTOR,
    VOLUME_FACTOR,
    InsightService,
    RevenueDecomposition,
    decompose_revenue,
)
from marginlens.services.sales import ItemPeriodSales, PeriodSales, SalesQueryService

from conftest import NOW


def sales(order_count, **items):
    return PeriodSales(
        order_count=order_count,
        items={key: ItemPeriodSales(quantity=q, revenue=r) for key, (q, r) in items.items()},
    )


class TestDecomposition:
    """Volume, price and mix always add up to the total change."""

    def test_volume_and_price(self):
        comparison = sales(1, a=(10, 1000))
        current = sales(1, a=(12, 1320))

        d = decompose_revenue(current, comparison)

        assert d.volume_effect == Decimal("200.00")
        assert d.price_effect == Decimal("120.00")
        assert d.mix_effect == 0
        assert d.total_change == Decimal("320.00")

    def test_new_item_lands_in_mix(self):
        comparison = sales(1, a=(10, 1000))
        current = sales(2, a=(10, 1000), b=(5, 250))

        d = decompose_revenue(current, comparison)

        assert d.volume_effect == 0
        assert d.price_effect == 0
        assert d.mix_effect == Decimal("250.00")

    def test_discontinued_item_counts_as_lost_volume(self):
        comparison = sales(2, a=(10, 1000), b=(4, 200))
        current = sales(1, a=(10, 1000))

        d = decompose_revenue(current, comparison)

        assert d.volume_effect == Decimal("-200.00")
        assert d.volume_effect + d.price_effect + d.mix_effect == d.total_change

    @pytest.mark.parametrize("comparison,current", [
        (sales(3, a=(10, 1000), b=(7, 350)), sales(4, a=(6, 660), c=(9, 810))),
        (sales(5, a=(3, 27.5), b=(100, 1234.5)), sales(2, b=(80, 1100.25))),
        (sales(1, a=(1, 1)), sales(1, a=(1000, 99999))),
        (sales(2, a=(3, 10.1), b=(7, 0.7)), sales(2, a=(3, 10.2), b=(6, 0.3))),
    ])
    def test_effects_are_additive(self, comparison, current):
        d = decompose_revenue(current, comparison)
        assert d.volume_effect + d.price_effect + d.mix_effect == d.total_change

    def test_additive_for_cent_valued_revenues(self):
        rng = random.Random(20240315)
        item_ids = ["a", "b", "c", "d"]

        for _ in range(2000):
            periods = []
            for _ in range(2):
                chosen = rng.sample(item_ids, rng.randint(1, len(item_ids)))
                periods.append(sales(
                    len(chosen),
                    **{i: (rng.randint(1, 60), rng.randint(1, 500000) / 100) for i in chosen}
                ))
            comparison, current = periods

            d = decompose_revenue(current, comparison)

            assert d.volume_effect + d.price_effect + d.mix_effect == d.total_change
            assert d.volume_effect == d.volume_effect.quantize(Decimal("0.01"))
            assert d.price_effect == d.price_effect.quantize(Decimal("0.01"))

    def test_float_revenues_are_read_as_written(self):
        d = decompose_revenue(sales(1, a=(3, 0.3)), sales(1, a=(1, 0.1)))

        assert d.current_revenue == Decimal("0.30")
        assert d.comparison_revenue == Decimal("0.10")
        assert d.total_change == Decimal("0.20")
        assert d.volume_effect == Decimal("0.20")
        assert d.price_effect == 0

    def test_factors_sorted_by_magnitude(self):
        d = RevenueDecomposition(
            current_revenue=900, comparison_revenue=1000,
            volume_effect=-300, price_effect=250, mix_effect=-50,
        )

        factors = d.factors()

        assert [f.factor for f in factors] == [VOLUME_FACTOR, PRICE_FACTOR, MIX_FACTOR]
        assert factors[0].direction == "negative"
        assert factors[0].contribution_pct == pytest.approx(-300.0)
        assert factors[1].direction == "positive"


class TestExplanation:

    def service(self, db):
        return InsightService(db)

    def test_no_change(self, db):
        d = RevenueDecomposition(1000, 1000, 0, 0, 0)
        assert self.service(db).explain(d) == "No significant revenue change detected."

    def test_names_dominant_factors(self, db):
        d = RevenueDecomposition(1320, 1000, 200, 120, 0)
        assert self.service(db).explain(d) == (
            "Revenue increased primarily because customer demand increased and prices were raised."
        )

    def test_mix_is_flagged_as_residual(self, db):
        d = RevenueDecomposition(1250, 1000, 0, 0, 250)
        text = self.service(db).explain(d)
        assert text.startswith("Revenue increased primarily because product mix changed.")
        assert "residual" in text

    def test_no_dominant_factor(self, db):
        # Effects need not sum to the change here; each is under 30% of it
        d = RevenueDecomposition(1100, 1000, 20, 20, 20)
        assert self.service(db).explain(d) == (
            "Revenue change was due to minor fluctuations across multiple factors."
        )

    def test_stable_recommendation(self, db):
        d = RevenueDecomposition(1040, 1000, 40, 0, 0)
        assert self.service(db).recommend(d.factors(), 4.0) == "Revenue is stable. Continue monitoring trends."

    def test_traffic_decline_recommendation(self, db):
        d = RevenueDecomposition(800, 1000, -200, 0, 0)
        assert self.service(db).recommend(d.factors(), -20.0).startswith("Customer traffic has declined.")

    def test_price_driven_decline_recommendation(self, db):
        d = RevenueDecomposition(800, 1000, -50, -150, 0)
        assert "smaller price increments" in self.service(db).recommend(d.factors(), -20.0)

    def test_growth_needs_no_recommendation(self, db):
        d = RevenueDecomposition(1200, 1000, 200, 0, 0)
        assert self.service(db).recommend(d.factors(), 20.0) is None

    @pytest.mark.parametrize("pct,severity", [
        (25.0, "critical"),
        (-20.5, "critical"),
        (20.0, "warning"),
        (-15.0, "warning"),
        (10.0, "info"),
        (0.0, "info"),
    ])
    def test_severity(self, db, pct, severity):
        assert self.service(db).severity_for_change(pct) == severity


class TestConfidence:

    @pytest.mark.parametrize("current,comparison,expected", [
        (150, 150, 0.85),
        (1000, 1000, 0.85),
        (50, 50, 0.5),
        (100, 40, 0.56),
        (0, 0, 0.0),
    ])
    def test_confidence(self, db, current, comparison, expected):
        score = InsightService(db).confidence_score(current, comparison)
        assert score == pytest.approx(expected)
        assert 0.0 <= score <= 0.85


class TestAnalyzeRevenueChange:

    def test_decomposition_is_stored(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        place_order(NOW - timedelta(days=10), [(item, 10, 100)])
        place_order(NOW - timedelta(days=3), [(item, 12, 110)])

        result = InsightService(db).analyze_revenue_change(restaurant.id, as_of=NOW)

        d = result.decomposition
        assert d.comparison_revenue == pytest.approx(1000)
        assert d.current_revenue == pytest.approx(1320)
        assert d.volume_effect + d.price_effect + d.mix_effect == d.total_change
        assert result.severity == "critical"
        assert result.sample_size == 2
        assert result.confidence_score <= 0.85
        assert result.observation.startswith("Revenue increased by 32.0%")

        stored = db.get(Insight, result.insight_id)
        assert stored.insight_type == "revenue_decomposition"
        assert stored.expires_at == NOW + timedelta(days=7)
        assert [f["factor"] for f in stored.causal_factors] == [f.factor for f in result.causal_factors]
        assert stored.metrics["percent_change"] == pytest.approx(32.0)
        stored_total = sum(Decimal(f["contribution"]) for f in stored.causal_factors)
        assert stored_total == Decimal(stored.metrics["absolute_change"]) == Decimal("320.00")

    def test_frozen_unit_price_drives_revenue(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        place_order(NOW - timedelta(days=10), [(item, 10)])
        item.price = 999
        db.commit()
        place_order(NOW - timedelta(days=3), [(item, 10)])

        result = InsightService(db).analyze_revenue_change(restaurant.id, as_of=NOW)

        d = result.decomposition
        assert d.comparison_revenue == Decimal("1000.00")
        assert d.current_revenue == Decimal("9990.00")
        assert d.volume_effect == 0
        assert d.price_effect == Decimal("8990.00")
        assert result.explanation == "Revenue increased primarily because prices were raised."

    def test_unchanged_revenue(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        place_order(NOW - timedelta(days=10), [(item, 10)])
        place_order(NOW - timedelta(days=3), [(item, 10)])

        result = InsightService(db).analyze_revenue_change(restaurant.id, as_of=NOW)

        assert result.decomposition.total_change == 0
        assert result.explanation == "No significant revenue change detected."
        assert result.recommendation == "Revenue is stable. Continue monitoring trends."
        assert result.severity == "info"

    def test_custom_period_lengths(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        place_order(NOW - timedelta(days=20), [(item, 10)])
        place_order(NOW - timedelta(days=2), [(item, 5)])

        # Comparison window is [now - 33d, now - 3d)
        result = InsightService(db).analyze_revenue_change(
            restaurant.id, current_period_days=3, comparison_period_days=30, as_of=NOW
        )

        assert result.decomposition.comparison_revenue == Decimal("1000.00")
        assert result.decomposition.current_revenue == Decimal("500.00")

    def test_empty_comparison_period(self, db, restaurant, make_item, place_order):
        item = make_item()
        place_order(NOW - timedelta(days=2), [(item, 3)])

        result = InsightService(db).analyze_revenue_change(restaurant.id, as_of=NOW)

        assert isinstance(result, InsufficientData)
        assert db.execute(select(Insight)).scalars().all() == []

    def test_cancelled_orders_do_not_count(self, db, restaurant, make_item, place_order):
        item = make_item()
        place_order(NOW - timedelta(days=10), [(item, 3)], status=OrderStatus.CANCELLED)
        place_order(NOW - timedelta(days=2), [(item, 3)])

        result = InsightService(db).analyze_revenue_change(restaurant.id, as_of=NOW)

        assert isinstance(result, InsufficientData)

    def test_unknown_restaurant(self, db):
        with pytest.raises(NotFound):
            InsightService(db).analyze_revenue_change(uuid4(), as_of=NOW)

    def test_store_failure(self, db, restaurant, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(SalesQueryService, "period_sales", broken)

        with pytest.raises(ComputationFailure):
            InsightService(db).analyze_revenue_change(restaurant.id, as_of=NOW)


class TestItemPerformance:

    def test_underperforming_item_is_critical(self, db, make_item, place_order):
        item = make_item(name="Biryani")
        # Baseline days 8..17 back: mean 5, std 1
        for offset, qty in enumerate([4, 6] * 5):
            place_order(NOW - timedelta(days=8 + offset), [(item, qty)])
        BaselineService(db).compute_item_baseline(item.id, as_of=NOW - timedelta(days=7))
        place_order(NOW - timedelta(days=2), [(item, 7)])

        insight = InsightService(db).analyze_item_performance(item.id, as_of=NOW)

        assert isinstance(insight, Insight)
        assert insight.severity == "critical"
        assert insight.observation == "Biryani is underperforming its baseline."
        assert insight.recommendation == "Consider running a promotion."
        assert insight.metrics["current_value"] == pytest.approx(1.0)

    def test_outperforming_item_is_info(self, db, make_item, place_order):
        item = make_item(name="Biryani")
        for offset, qty in enumerate([4, 6] * 5):
            place_order(NOW - timedelta(days=8 + offset), [(item, qty)])
        BaselineService(db).compute_item_baseline(item.id, as_of=NOW - timedelta(days=7))
        place_order(NOW - timedelta(days=2), [(item, 70)])

        insight = InsightService(db).analyze_item_performance(item.id, as_of=NOW)

        assert insight.severity == "info"
        assert insight.recommendation is None

    def test_without_baseline(self, db, make_item, place_order):
        item = make_item()
        place_order(NOW - timedelta(days=2), [(item, 3)])

        result = InsightService(db).analyze_item_performance(item.id, as_of=NOW)

        assert isinstance(result, InsufficientData)


class TestActiveInsights:

    def test_expired_insights_are_hidden(self, db, restaurant, make_item, place_order):
        item = make_item()
        place_order(NOW - timedelta(days=10), [(item, 3)])
        place_order(NOW - timedelta(days=2), [(item, 4)])
        service = InsightService(db)
        service.analyze_revenue_change(restaurant.id, as_of=NOW)

        assert len(service.get_active_insights(restaurant.id, as_of=NOW + timedelta(days=1))) == 1
        assert service.get_active_insights(restaurant.id, as_of=NOW + timedelta(days=8)) == []
