"""
Rolling per-item statistical baselines.

A baseline is the "normal" daily performance of a menu item over a lookback
window: mean and population standard deviation of daily quantity and revenue,
an elasticity estimate from day-over-day price moves, and a confidence score.

Confidence:
    confidence = max(0, (1 - CV) * min(1, sample_days / 30)), clamped to [0, 1]

    where CV is the coefficient of variation of daily quantity.

Baselines are append-only. Each recompute writes version N+1 for the item;
the read-latest-then-insert sequence runs under a row lock on the menu item
so concurrent recomputes cannot both claim the same version.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from marginlens.core.business_day import utc_now
from marginlens.core.errors import InsufficientData, NotFound, store_guard
from marginlens.models.baseline import ItemBaseline
from marginlens.models.menu import MenuItem
from marginlens.services import statistics as stats
from marginlens.services.sales import SalesQueryService

logger = logging.getLogger(__name__)


@dataclass
class BaselineComparison:
    """Current value measured against the latest baseline."""
    baseline_avg: float
    baseline_std: float
    current_value: float
    deviation_sigma: float
    performance: str  # above, below, normal
    baseline_version: int


class BaselineService:
    """Computes and versions ItemBaseline rows."""

    MIN_SAMPLE_DAYS = 7
    DEFAULT_LOOKBACK_DAYS = 30
    FULL_CONFIDENCE_DAYS = 30

    def __init__(self, db: Session):
        self.db = db
        self.sales = SalesQueryService(db)

    def compute_item_baseline(
        self,
        menu_item_id: UUID,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        as_of: Optional[datetime] = None
    ) -> Union[ItemBaseline, InsufficientData]:
        """
        Compute and persist a new baseline version for one menu item.

        Args:
            menu_item_id: Menu item UUID
            lookback_days: Window length ending at as_of
            as_of: End of the window (defaults to now, naive UTC)

        Returns:
            The stored ItemBaseline, or InsufficientData when fewer than
            MIN_SAMPLE_DAYS distinct business days had sales (nothing written)

        Raises:
            NotFound: unknown menu item
            ComputationFailure: the store failed; nothing was written
        """
        end = as_of or utc_now()
        start = end - timedelta(days=lookback_days)

        with store_guard(self.db, "compute_item_baseline"):
            item = self.sales.get_menu_item(menu_item_id)
            if item is None:
                raise NotFound(f"Menu item {menu_item_id} not found")

            restaurant = item.restaurant
            series = self.sales.item_daily_series(
                menu_item_id, start, end, restaurant.timezone if restaurant else None
            )

            if len(series) < self.MIN_SAMPLE_DAYS:
                logger.warning(
                    f"Baseline skipped for item {menu_item_id}: "
                    f"{len(series)} sales days < {self.MIN_SAMPLE_DAYS}"
                )
                return InsufficientData(
                    reason="Not enough days of sales history for a baseline",
                    required=self.MIN_SAMPLE_DAYS,
                    available=len(series),
                )

            quantities = [p.quantity for p in series]
            revenues = [p.revenue for p in series]

            cv = stats.coefficient_of_variation(quantities)
            sample_factor = min(1.0, len(series) / self.FULL_CONFIDENCE_DAYS)
            confidence = stats.clamp(max(0.0, (1 - cv) * sample_factor))

            # Serialize version allocation per item
            self.db.execute(
                select(MenuItem.id).where(MenuItem.id == menu_item_id).with_for_update()
            )
            latest_version = self.db.execute(
                select(func.max(ItemBaseline.version)).where(ItemBaseline.menu_item_id == menu_item_id)
            ).scalar()

            baseline = ItemBaseline(
                restaurant_id=item.restaurant_id,
                menu_item_id=menu_item_id,
                version=(latest_version or 0) + 1,
                period_start=start,
                period_end=end,
                avg_daily_quantity=stats.mean(quantities),
                std_dev_quantity=stats.standard_deviation(quantities),
                avg_daily_revenue=stats.mean(revenues),
                std_dev_revenue=stats.standard_deviation(revenues),
                price_elasticity=stats.estimate_elasticity(series),
                seasonality_index=stats.estimate_seasonality(series),
                sample_size=len(series),
                confidence_score=confidence,
                computed_at=utc_now(),
            )
            self.db.add(baseline)
            self.db.commit()
            self.db.refresh(baseline)

        logger.info(
            f"Baseline v{baseline.version} stored for item {menu_item_id} "
            f"({baseline.sample_size} days, confidence {baseline.confidence_score:.2f})"
        )
        return baseline

    def get_latest_baseline(self, menu_item_id: UUID) -> Optional[ItemBaseline]:
        with store_guard(self.db, "get_latest_baseline"):
            stmt = (
                select(ItemBaseline)
                .where(ItemBaseline.menu_item_id == menu_item_id)
                .order_by(ItemBaseline.version.desc())
                .limit(1)
            )
            return self.db.execute(stmt).scalar_one_or_none()

    def get_baseline_comparison(
        self,
        menu_item_id: UUID,
        current_value: float
    ) -> Optional[BaselineComparison]:
        """
        Compare a current daily quantity to the latest baseline.

        Returns None when the item has no baseline yet; callers treat that
        as "not enough history", not as an error.
        """
        baseline = self.get_latest_baseline(menu_item_id)
        if baseline is None:
            return None

        deviation = stats.deviation_sigma(
            current_value, baseline.avg_daily_quantity, baseline.std_dev_quantity
        )
        return BaselineComparison(
            baseline_avg=baseline.avg_daily_quantity,
            baseline_std=baseline.std_dev_quantity,
            current_value=current_value,
            deviation_sigma=deviation,
            performance=stats.classify_deviation(deviation),
            baseline_version=baseline.version,
        )
