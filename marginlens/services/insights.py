"""
Explainable insights: why did revenue (or an item) move.

Revenue decomposition between a comparison period (o) and the current
period (n), over per-item quantities Q and quantity-weighted average prices P:

    Volume effect = Σ_{i in o}       (Q_n,i - Q_o,i) × P_o,i
    Price effect  = Σ_{i in o and n}  Q_n,i × (P_n,i - P_o,i)
    Mix effect    = ΔRevenue - Volume effect - Price effect

The mix effect is a balancing term, so the three effects always sum to the
total change. It absorbs new and discontinued items together with the
price x quantity interaction and is not independently measured.

Money is carried as Decimal: revenues, volume and price effects are rounded
to cents and mix is derived from the rounded values, so the three effects
add up to the total change exactly.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from marginlens.core.business_day import utc_now
from marginlens.core.config import get_settings
from marginlens.core.errors import InsufficientData, NotFound, store_guard
from marginlens.models.insight import Insight
from marginlens.services import statistics as stats
from marginlens.services.baseline import BaselineService
from marginlens.services.sales import PeriodSales, SalesQueryService

logger = logging.getLogger(__name__)

VOLUME_FACTOR = "Volume (Customer Demand)"
PRICE_FACTOR = "Price Changes"
MIX_FACTOR = "Product Mix Shift"

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Decimal from a float, int or Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class CausalFactor:
    factor: str
    contribution: Decimal
    contribution_pct: float
    direction: str  # positive, negative

    def to_dict(self) -> Dict:
        return {
            "factor": self.factor,
            "contribution": str(self.contribution),
            "contribution_pct": self.contribution_pct,
            "direction": self.direction,
        }


@dataclass
class RevenueDecomposition:
    """Additive split of a revenue change into volume, price and mix effects."""
    current_revenue: Decimal
    comparison_revenue: Decimal
    volume_effect: Decimal
    price_effect: Decimal
    mix_effect: Decimal

    def __post_init__(self):
        self.current_revenue = to_money(self.current_revenue)
        self.comparison_revenue = to_money(self.comparison_revenue)
        self.volume_effect = to_money(self.volume_effect)
        self.price_effect = to_money(self.price_effect)
        self.mix_effect = to_money(self.mix_effect)

    @property
    def total_change(self) -> Decimal:
        return self.current_revenue - self.comparison_revenue

    @property
    def percent_change(self) -> float:
        return float(stats.percent_change(self.comparison_revenue, self.current_revenue))

    def share_of_change(self, effect: Decimal) -> float:
        """Effect as a percentage of |total change|, 0 when nothing changed."""
        total = abs(self.total_change)
        if total == 0:
            return 0.0
        return float(effect / total * 100)

    def factors(self) -> List[CausalFactor]:
        """Causal factors ordered by absolute contribution, largest first."""
        factors = [
            CausalFactor(name, effect, self.share_of_change(effect), "positive" if effect >= 0 else "negative")
            for name, effect in (
                (VOLUME_FACTOR, self.volume_effect),
                (PRICE_FACTOR, self.price_effect),
                (MIX_FACTOR, self.mix_effect),
            )
        ]
        return sorted(factors, key=lambda f: abs(f.contribution), reverse=True)


@dataclass
class DecomposedInsight:
    """Result of analyze_revenue_change, mirrored into a stored Insight row."""
    insight_id: UUID
    observation: str
    explanation: str
    causal_factors: List[CausalFactor]
    formula: str
    assumptions: List[str]
    sample_size: int
    confidence_score: float
    severity: str
    recommendation: Optional[str]
    decomposition: RevenueDecomposition
    expires_at: datetime
    metrics: Dict[str, Union[str, float]] = field(default_factory=dict)


def decompose_revenue(current: PeriodSales, comparison: PeriodSales) -> RevenueDecomposition:
    """
    Split the revenue change between two periods into volume, price and mix.

    Volume and price are rounded to cents; mix is the exact remainder, so
    volume + price + mix == current_revenue - comparison_revenue.
    """
    current_items = {
        item_id: (to_money(s.quantity), to_money(s.revenue).quantize(CENT))
        for item_id, s in current.items.items()
    }
    comparison_items = {
        item_id: (to_money(s.quantity), to_money(s.revenue).quantize(CENT))
        for item_id, s in comparison.items.items()
    }

    volume_effect = Decimal("0")
    price_effect = Decimal("0")

    for item_id, (comp_qty, comp_revenue) in comparison_items.items():
        comp_price = comp_revenue / comp_qty if comp_qty else Decimal("0")
        curr_qty, curr_revenue = current_items.get(item_id, (Decimal("0"), None))
        volume_effect += (curr_qty - comp_qty) * comp_price
        if curr_revenue is not None and curr_qty:
            price_effect += curr_qty * (curr_revenue / curr_qty - comp_price)

    volume_effect = volume_effect.quantize(CENT)
    price_effect = price_effect.quantize(CENT)

    current_revenue = sum((r for _, r in current_items.values()), Decimal("0"))
    comparison_revenue = sum((r for _, r in comparison_items.values()), Decimal("0"))
    mix_effect = (current_revenue - comparison_revenue) - volume_effect - price_effect

    return RevenueDecomposition(
        current_revenue=current_revenue,
        comparison_revenue=comparison_revenue,
        volume_effect=volume_effect,
        price_effect=price_effect,
        mix_effect=mix_effect,
    )


class InsightService:
    """Generates and stores explainable insights."""

    DEFAULT_PERIOD_DAYS = 7
    DOMINANT_FACTOR_SHARE = Decimal("0.30")  # Of |total change|
    MATERIALITY_PCT = 5.0
    CRITICAL_CHANGE_PCT = 20.0
    WARNING_CHANGE_PCT = 10.0
    MAX_CONFIDENCE = 0.85
    FULL_CONFIDENCE_SAMPLES = 200
    IMBALANCE_RATIO = 0.5
    IMBALANCE_PENALTY = 0.8

    ITEM_WINDOW_DAYS = 7
    ITEM_CRITICAL_SIGMA = 1.5
    ITEM_WARNING_SIGMA = 0.5

    def __init__(self, db: Session):
        self.db = db
        self.sales = SalesQueryService(db)
        self.settings = get_settings()

    def analyze_revenue_change(
        self,
        restaurant_id: UUID,
        current_period_days: int = DEFAULT_PERIOD_DAYS,
        comparison_period_days: Optional[int] = None,
        as_of: Optional[datetime] = None
    ) -> Union[DecomposedInsight, InsufficientData]:
        """
        Explain the revenue change between two back-to-back periods ending at as_of.

        Current period: [as_of - current_days, as_of)
        Comparison period: the comparison_days immediately before that
        (defaults to the same length as the current period).

        Returns InsufficientData when either period has no completed orders.
        """
        comparison_period_days = comparison_period_days or current_period_days
        now = as_of or utc_now()
        current_start = now - timedelta(days=current_period_days)
        comparison_start = current_start - timedelta(days=comparison_period_days)

        with store_guard(self.db, "analyze_revenue_change"):
            if self.sales.get_restaurant(restaurant_id) is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")

            current = self.sales.period_sales(restaurant_id, current_start, now)
            comparison = self.sales.period_sales(restaurant_id, comparison_start, current_start)

            if current.order_count == 0 or comparison.order_count == 0:
                logger.warning(
                    f"Revenue analysis skipped for restaurant {restaurant_id}: "
                    f"{current.order_count} current / {comparison.order_count} comparison orders"
                )
                return InsufficientData(
                    reason="Both periods need at least one completed order",
                    required=1,
                    available=min(current.order_count, comparison.order_count),
                )

            decomposition = decompose_revenue(current, comparison)
            factors = decomposition.factors()
            pct = decomposition.percent_change
            change = decomposition.total_change

            sample_size = current.order_count + comparison.order_count
            confidence = self.confidence_score(current.order_count, comparison.order_count)
            severity = self.severity_for_change(pct)

            observation = (
                f"Revenue {'increased' if change > 0 else 'decreased' if change < 0 else 'was unchanged'} "
                f"by {abs(pct):.1f}% ({abs(change):.0f}) compared to the previous "
                f"{comparison_period_days} days."
            )
            explanation = self.explain(decomposition)
            recommendation = self.recommend(factors, pct)
            formula = self.render_formula(decomposition)
            assumptions = [
                "Linear decomposition assumes no interaction between price and quantity effects",
                "Average prices weighted by quantity sold in each period",
                f"Analysis based on {current.order_count} current and {comparison.order_count} comparison orders",
                "Mix effect includes new items, discontinued items, and cross-effects",
                "Does not account for external factors (seasonality, competition, weather, events)",
            ]
            metrics = {
                "current_value": str(decomposition.current_revenue),
                "previous_value": str(decomposition.comparison_revenue),
                "absolute_change": str(change),
                "percent_change": pct,
            }
            expires_at = now + timedelta(days=self.settings.INSIGHT_TTL_DAYS)

            insight = Insight(
                restaurant_id=restaurant_id,
                insight_type="revenue_decomposition",
                severity=severity,
                observation=observation,
                explanation=explanation,
                causal_factors=[f.to_dict() for f in factors],
                formula=formula,
                assumptions=assumptions,
                metrics=metrics,
                sample_size=sample_size,
                confidence_score=confidence,
                recommendation=recommendation,
                created_at=now,
                expires_at=expires_at,
            )
            self.db.add(insight)
            self.db.commit()
            self.db.refresh(insight)

        logger.info(
            f"Revenue insight stored for restaurant {restaurant_id}: "
            f"{pct:+.1f}% ({severity}), confidence {confidence:.0%}"
        )

        return DecomposedInsight(
            insight_id=insight.id,
            observation=observation,
            explanation=explanation,
            causal_factors=factors,
            formula=formula,
            assumptions=assumptions,
            sample_size=sample_size,
            confidence_score=confidence,
            severity=severity,
            recommendation=recommendation,
            decomposition=decomposition,
            expires_at=expires_at,
            metrics=metrics,
        )

    def confidence_score(self, current_samples: int, comparison_samples: int) -> float:
        """
        min(0.85, min(1, total/200) x balance_penalty), where the penalty is 0.8
        when the smaller period has under half the larger period's orders.
        """
        total = current_samples + comparison_samples
        if total == 0:
            return 0.0
        sample_confidence = min(1.0, total / self.FULL_CONFIDENCE_SAMPLES)
        smaller = min(current_samples, comparison_samples)
        larger = max(current_samples, comparison_samples)
        penalty = self.IMBALANCE_PENALTY if smaller < larger * self.IMBALANCE_RATIO else 1.0
        return min(self.MAX_CONFIDENCE, sample_confidence * penalty)

    def severity_for_change(self, percent_change: float) -> str:
        magnitude = abs(percent_change)
        if magnitude > self.CRITICAL_CHANGE_PCT:
            return "critical"
        if magnitude > self.WARNING_CHANGE_PCT:
            return "warning"
        return "info"

    def explain(self, decomposition: RevenueDecomposition) -> str:
        """Name every factor carrying more than 30% of the absolute change."""
        total = decomposition.total_change
        if total == 0:
            return "No significant revenue change detected."

        threshold = abs(total) * self.DOMINANT_FACTOR_SHARE
        reasons = []
        if abs(decomposition.volume_effect) > threshold:
            reasons.append(
                f"customer demand {'increased' if decomposition.volume_effect > 0 else 'decreased'}"
            )
        if abs(decomposition.price_effect) > threshold:
            reasons.append(f"prices were {'raised' if decomposition.price_effect > 0 else 'lowered'}")
        mix_named = abs(decomposition.mix_effect) > threshold
        if mix_named:
            reasons.append("product mix changed")

        if not reasons:
            return "Revenue change was due to minor fluctuations across multiple factors."

        text = (
            f"Revenue {'increased' if total > 0 else 'decreased'} primarily because "
            f"{' and '.join(reasons)}."
        )
        if mix_named:
            text += (
                " The product mix figure is the residual after volume and price, so it"
                " also carries new or discontinued items and the combined effect of"
                " price and quantity moving together."
            )
        return text

    def recommend(self, factors: List[CausalFactor], percent_change: float) -> Optional[str]:
        if abs(percent_change) <= self.MATERIALITY_PCT:
            return "Revenue is stable. Continue monitoring trends."

        if percent_change < 0 and factors:
            primary = factors[0].factor
            if primary == VOLUME_FACTOR:
                return "Customer traffic has declined. Consider running targeted promotions to drive footfall."
            if primary == PRICE_FACTOR:
                return (
                    "Recent price increases may have negatively impacted demand. "
                    "Consider testing smaller price increments."
                )
        return None

    @staticmethod
    def render_formula(d: RevenueDecomposition) -> str:
        return (
            "ΔRevenue = Volume Effect + Price Effect + Mix Effect\n"
            "  = (ΔQuantity × P_old) + (Q_new × ΔPrice) + ΔMix\n"
            f"  = {d.volume_effect:.0f} + {d.price_effect:.0f} + {d.mix_effect:.0f}\n"
            f"  = {d.total_change:.0f}"
        )

    def analyze_item_performance(
        self,
        menu_item_id: UUID,
        as_of: Optional[datetime] = None
    ) -> Union[Insight, InsufficientData]:
        """
        Score the last 7 days' average daily quantity against the latest baseline.

        Severity: critical below -1.5 sigma, warning beyond +-0.5 sigma, else info.
        """
        now = as_of or utc_now()
        baselines = BaselineService(self.db)

        with store_guard(self.db, "analyze_item_performance"):
            item = self.sales.get_menu_item(menu_item_id)
            if item is None:
                raise NotFound(f"Menu item {menu_item_id} not found")

            baseline = baselines.get_latest_baseline(menu_item_id)
            if baseline is None:
                logger.warning(f"No baseline found for item {menu_item_id}")
                return InsufficientData(reason="No baseline computed for this item yet")

            recent_start = now - timedelta(days=self.ITEM_WINDOW_DAYS)
            units = self.sales.item_order_count(menu_item_id, recent_start, now)
            if units == 0:
                return InsufficientData(
                    reason=f"No sales in the last {self.ITEM_WINDOW_DAYS} days",
                    required=1,
                    available=0,
                )

            avg_daily_qty = units / self.ITEM_WINDOW_DAYS
            z = stats.deviation_sigma(avg_daily_qty, baseline.avg_daily_quantity, baseline.std_dev_quantity)

            if abs(z) > self.ITEM_CRITICAL_SIGMA:
                severity = "critical" if z < 0 else "info"
            elif abs(z) > self.ITEM_WARNING_SIGMA:
                severity = "warning"
            else:
                severity = "info"

            status = "outperforming" if z > 0 else "underperforming" if z < 0 else "in line with"

            insight = Insight(
                restaurant_id=item.restaurant_id,
                menu_item_id=menu_item_id,
                insight_type="item_performance",
                severity=severity,
                observation=f"{item.name} is {status} its baseline.",
                explanation=f"Current sales are {z:.1f} standard deviations from normal.",
                causal_factors=[],
                formula=f"z-score = {z:.2f}",
                assumptions=["Normal distribution assumed"],
                metrics={
                    "current_value": avg_daily_qty,
                    "previous_value": baseline.avg_daily_quantity,
                    "absolute_change": avg_daily_qty - baseline.avg_daily_quantity,
                    "percent_change": stats.percent_change(baseline.avg_daily_quantity, avg_daily_qty),
                },
                sample_size=units,
                confidence_score=baseline.confidence_score,
                recommendation="Consider running a promotion." if z < -self.ITEM_CRITICAL_SIGMA else None,
                created_at=now,
                expires_at=now + timedelta(days=self.settings.INSIGHT_TTL_DAYS),
            )
            self.db.add(insight)
            self.db.commit()
            self.db.refresh(insight)

        logger.info(f"Item performance insight for {item.name}: z={z:.2f} ({severity})")
        return insight

    def get_active_insights(self, restaurant_id: UUID, as_of: Optional[datetime] = None) -> List[Insight]:
        """Insights that have not expired yet, newest first."""
        now = as_of or utc_now()
        with store_guard(self.db, "get_active_insights"):
            stmt = (
                select(Insight)
                .where(Insight.restaurant_id == restaurant_id, Insight.expires_at > now)
                .order_by(Insight.created_at.desc())
            )
            return list(self.db.execute(stmt).scalars().all())
