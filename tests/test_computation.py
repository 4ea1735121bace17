"""
Tests for the scheduled recompute.
"""
from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from marginlens.core.errors import ComputationFailure, NotFound
from marginlens.models.aggregate import AlgorithmRun, TimeAggregate
from marginlens.models.decision import DecisionStatus
from marginlens.services.baseline import BaselineService
from marginlens.services.computation import ComputationService
from marginlens.services.decision_tracker import DecisionTracker
from marginlens.services.sales import SalesQueryService

from conftest import NOW
from test_decision_tracker import draft


class TestRecomputeAll:

    def test_friday_run(self, db, restaurant, make_item, place_order):
        busy = make_item(name="Chole Bhature", price=200)
        make_item(name="Seasonal Soup", price=150)
        for days_back in range(1, 11):
            place_order(NOW - timedelta(days=days_back), [(busy, 5)])
        place_order(NOW - timedelta(hours=2), [(busy, 3)])

        summary = ComputationService(db).recompute_all(restaurant.id, as_of=NOW)

        assert summary["business_date"] == "2024-03-15"
        assert summary["aggregates"] == {"day": 1, "week": None, "month": None}
        assert summary["baselines_computed"] == 1
        assert summary["baselines_skipped"] == 1
        assert summary["items_checked"] == 1
        assert summary["decisions_evaluated"] == 0

        day = db.query(TimeAggregate).filter_by(period_type="day").one()
        assert day.period_start == date(2024, 3, 15)
        assert day.total_orders == 1
        assert day.total_revenue == pytest.approx(600)

        run = db.query(AlgorithmRun).one()
        assert run.status == "completed"
        assert run.output_summary["baselines_computed"] == 1

    def test_rerun_writes_new_versions(self, db, restaurant, make_item, place_order):
        item = make_item()
        place_order(NOW - timedelta(hours=2), [(item, 1)])
        service = ComputationService(db)

        service.recompute_all(restaurant.id, as_of=NOW)
        summary = service.recompute_all(restaurant.id, as_of=NOW)

        assert summary["aggregates"]["day"] == 2
        assert db.query(TimeAggregate).count() == 2
        assert db.query(AlgorithmRun).filter_by(status="completed").count() == 2

    def test_sunday_writes_week(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        sunday = datetime(2024, 3, 17, 12, 0)
        place_order(sunday - timedelta(days=6), [(item, 1)])  # Monday
        place_order(sunday - timedelta(hours=1), [(item, 2)])
        place_order(sunday - timedelta(days=7), [(item, 9)])  # Previous Sunday

        summary = ComputationService(db).recompute_all(restaurant.id, as_of=sunday)

        assert summary["aggregates"]["week"] == 1
        week = db.query(TimeAggregate).filter_by(period_type="week").one()
        assert week.period_start == date(2024, 3, 11)
        assert week.period_end == date(2024, 3, 17)
        assert week.total_orders == 2
        assert week.total_revenue == pytest.approx(300)

    def test_month_end_writes_month(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        leap_day = datetime(2024, 2, 29, 12, 0)
        place_order(datetime(2024, 2, 1, 12, 0), [(item, 1)])
        place_order(leap_day - timedelta(hours=1), [(item, 1)])
        place_order(datetime(2024, 1, 31, 12, 0), [(item, 5)])

        summary = ComputationService(db).recompute_all(restaurant.id, as_of=leap_day)

        assert summary["aggregates"]["week"] is None
        month = db.query(TimeAggregate).filter_by(period_type="month").one()
        assert month.period_start == date(2024, 2, 1)
        assert month.total_orders == 2
        assert month.unique_items == 1
        assert month.total_items == 2

    def test_quiet_day_skips_aggregate(self, db, restaurant, make_item):
        make_item()

        summary = ComputationService(db).recompute_all(restaurant.id, as_of=NOW)

        assert summary["aggregates"]["day"] is None
        assert db.query(TimeAggregate).count() == 0

    def test_evaluates_matured_decisions(self, db, restaurant, make_item, place_order):
        item = make_item(price=100)
        tracker = DecisionTracker(db)
        decision_id = tracker.record_decision(restaurant.id, draft(entity_id=item.id))
        tracker.update_decision_status(decision_id, DecisionStatus.IMPLEMENTED, as_of=NOW - timedelta(days=20))
        place_order(NOW - timedelta(days=25), [(item, 10)])
        place_order(NOW - timedelta(days=15), [(item, 11)])

        summary = ComputationService(db).recompute_all(restaurant.id, as_of=NOW)

        assert summary["decisions_evaluated"] == 1
        assert tracker.get_outcome(decision_id).accuracy_score == pytest.approx(1.0)

    def test_failure_is_recorded_and_raised(self, db, restaurant, make_item, monkeypatch):
        make_item()

        def broken(self, *args, **kwargs):
            raise ComputationFailure("compute_item_baseline")

        monkeypatch.setattr(BaselineService, "compute_item_baseline", broken)

        with pytest.raises(ComputationFailure):
            ComputationService(db).recompute_all(restaurant.id, as_of=NOW)

        run = db.query(AlgorithmRun).one()
        assert run.status == "failed"
        assert "compute_item_baseline failed" in run.error_message

    def test_unknown_restaurant(self, db):
        with pytest.raises(NotFound):
            ComputationService(db).recompute_all(uuid4(), as_of=NOW)

    def test_store_error_on_lookup_is_computation_failure(self, db, restaurant, monkeypatch):
        def broken(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(SalesQueryService, "get_restaurant", broken)

        with pytest.raises(ComputationFailure) as excinfo:
            ComputationService(db).recompute_all(restaurant.id, as_of=NOW)

        assert excinfo.value.operation == "recompute_all"
        assert db.query(AlgorithmRun).count() == 0
