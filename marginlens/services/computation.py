"""
Scheduled recompute: the entry point an external scheduler calls daily.

Steps, in order:
1. Versioned time aggregate for the business day (plus the week on Sundays
   and the month on its last day)
2. Baselines for every active menu item
3. Item performance checks for items that now have a baseline
4. Outcome evaluation for matured decisions

Each run is audited in algorithm_runs (running -> completed / failed).
"""
import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, Optional
from uuid import UUID

import pytz
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from marginlens.core.business_day import BUSINESS_DAY_START_HOUR, get_business_date, utc_now
from marginlens.core.errors import NotFound, store_guard
from marginlens.models.aggregate import AlgorithmRun, TimeAggregate
from marginlens.models.baseline import ItemBaseline
from marginlens.models.insight import Insight
from marginlens.models.menu import MenuItem
from marginlens.services.baseline import BaselineService
from marginlens.services.insights import InsightService
from marginlens.services.outcome_evaluator import OutcomeEvaluator
from marginlens.services.sales import SalesQueryService

logger = logging.getLogger(__name__)


def business_day_bounds(day: date, restaurant_timezone: Optional[str] = None):
    """Naive UTC [start, end) of a business day (04:00 local to 04:00 next day)."""
    local_start = datetime.combine(day, time(hour=BUSINESS_DAY_START_HOUR))
    local_end = local_start + timedelta(days=1)
    if not restaurant_timezone:
        return local_start, local_end
    tz = pytz.timezone(restaurant_timezone)
    return (
        tz.localize(local_start).astimezone(pytz.UTC).replace(tzinfo=None),
        tz.localize(local_end).astimezone(pytz.UTC).replace(tzinfo=None),
    )


class ComputationService:
    """Orchestrates the daily recompute for one restaurant."""

    ALGORITHM_NAME = "recompute_all"

    def __init__(self, db: Session):
        self.db = db
        self.sales = SalesQueryService(db)

    def recompute_all(self, restaurant_id: UUID, as_of: Optional[datetime] = None) -> Dict:
        """
        Run every scheduled computation for a restaurant.

        Returns the run summary also stored on the AlgorithmRun row. Any
        failure is logged, marked on the run, and re-raised.
        """
        now = as_of or utc_now()

        with store_guard(self.db, "recompute_all"):
            restaurant = self.sales.get_restaurant(restaurant_id)
            if restaurant is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")

            run = AlgorithmRun(
                restaurant_id=restaurant_id,
                algorithm_name=self.ALGORITHM_NAME,
                run_started_at=utc_now(),
                status="running",
                input_params={"as_of": now.isoformat()},
            )
            self.db.add(run)
            self.db.commit()
            run_id = run.id

        logger.info(f"Starting recompute for restaurant {restaurant_id} as of {now:%Y-%m-%d %H:%M}")

        try:
            business_date = get_business_date(now, restaurant.timezone)
            summary = {"business_date": business_date.isoformat()}
            summary["aggregates"] = self.recompute_time_aggregates(restaurant_id, business_date, restaurant.timezone)
            summary.update(self.recompute_item_statistics(restaurant_id, now))

            evaluations = OutcomeEvaluator(self.db).evaluate_due_decisions(restaurant_id, now)
            summary["decisions_evaluated"] = len(evaluations)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Recompute failed for restaurant {restaurant_id}: {e}", exc_info=True)
            self._finish(run_id, "failed", error_message=str(e))
            raise

        self._finish(run_id, "completed", output_summary=summary)
        logger.info(f"Recompute complete for restaurant {restaurant_id}: {summary}")
        return summary

    def _finish(self, run_id: UUID, status: str, output_summary: Optional[Dict] = None, error_message: Optional[str] = None):
        with store_guard(self.db, "recompute_all"):
            run = self.db.get(AlgorithmRun, run_id)
            run.status = status
            run.run_completed_at = utc_now()
            run.output_summary = output_summary
            run.error_message = error_message
            self.db.commit()

    def recompute_time_aggregates(
        self,
        restaurant_id: UUID,
        business_date: date,
        restaurant_timezone: Optional[str] = None
    ) -> Dict[str, Optional[int]]:
        """Write the day rollup, plus week (Sunday) and month (last day) rollups."""
        versions: Dict[str, Optional[int]] = {"day": None, "week": None, "month": None}

        versions["day"] = self._write_aggregate(
            restaurant_id, "day", business_date, business_date, restaurant_timezone
        )
        if business_date.weekday() == 6:
            week_start = business_date - timedelta(days=6)
            versions["week"] = self._write_aggregate(
                restaurant_id, "week", week_start, business_date, restaurant_timezone
            )
        last_day = calendar.monthrange(business_date.year, business_date.month)[1]
        if business_date.day == last_day:
            versions["month"] = self._write_aggregate(
                restaurant_id, "month", business_date.replace(day=1), business_date, restaurant_timezone
            )
        return versions

    def _write_aggregate(
        self,
        restaurant_id: UUID,
        period_type: str,
        first_day: date,
        last_day: date,
        restaurant_timezone: Optional[str]
    ) -> Optional[int]:
        """Store the next version of a rollup; None when the period had no orders."""
        start, _ = business_day_bounds(first_day, restaurant_timezone)
        _, end = business_day_bounds(last_day, restaurant_timezone)

        with store_guard(self.db, "recompute_time_aggregates"):
            sales = self.sales.period_sales(restaurant_id, start, end)
            if sales.order_count == 0:
                return None

            revenue = sales.total_revenue
            latest = self.db.execute(
                select(func.max(TimeAggregate.version)).where(
                    TimeAggregate.restaurant_id == restaurant_id,
                    TimeAggregate.period_type == period_type,
                    TimeAggregate.period_start == first_day,
                )
            ).scalar()

            aggregate = TimeAggregate(
                restaurant_id=restaurant_id,
                period_type=period_type,
                period_start=first_day,
                period_end=last_day,
                total_revenue=revenue,
                total_orders=sales.order_count,
                avg_order_value=revenue / sales.order_count,
                total_items=int(sum(s.quantity for s in sales.items.values())),
                unique_items=len(sales.items),
                version=(latest or 0) + 1,
            )
            self.db.add(aggregate)
            self.db.commit()

        logger.info(f"Aggregate {period_type} {first_day} stored (v{aggregate.version})")
        return aggregate.version

    def recompute_item_statistics(self, restaurant_id: UUID, now: datetime) -> Dict[str, int]:
        """Refresh baselines for active items, then check item performance."""
        with store_guard(self.db, "recompute_item_statistics"):
            item_ids = self.db.execute(
                select(MenuItem.id).where(
                    MenuItem.restaurant_id == restaurant_id,
                    MenuItem.is_active == True,
                )
            ).scalars().all()

        baselines = BaselineService(self.db)
        insights = InsightService(self.db)
        computed = skipped = checked = 0

        for item_id in item_ids:
            result = baselines.compute_item_baseline(item_id, as_of=now)
            if isinstance(result, ItemBaseline):
                computed += 1
            else:
                skipped += 1

            if baselines.get_latest_baseline(item_id) is None:
                continue
            if isinstance(insights.analyze_item_performance(item_id, as_of=now), Insight):
                checked += 1

        logger.info(f"Baselines: {computed} computed, {skipped} skipped; {checked} items checked")
        return {"baselines_computed": computed, "baselines_skipped": skipped, "items_checked": checked}
