"""
Decision engine: turns menu, channel and capacity aggregates into a ranked
list of quantified recommendations.

Rules (margin M, orders N, price P, cost C over the analysis window):

    Puzzle -> Promote
        impact = 0.45 N x M                      range [0.7x, 1.2x]
    Plowhorse (M > 0) -> Reprice (+15% price, -25% volume)
        impact = 0.75 N x (P + round(0.15 P) - C) - N x M   range [0.8x, 1.1x]
    Dog with prep time > 15 min -> Remove
        impact = prep x N x 2.3 - N x M          range [0.6x, 1.4x]
    Direct delivery more profitable than aggregators -> Optimize channel mix
        impact = (aggregator_share - 0.3) x aggregator_revenue x 0.5   range [0.7x, 1.3x]
    Peak RevPASH > 2x off-peak -> Optimize capacity
        impact = (peak - off_peak) x 0.11 x seats x 3   range [0.8x, 1.2x]

Each rule reads only its own item/channel/window aggregates, so decisions
are independent of each other and of evaluation order. The reprice rule
assumes a flat 25% volume loss rather than applying the item's elasticity.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from marginlens.core.business_day import utc_now
from marginlens.core.config import get_settings
from marginlens.core.errors import NotFound, store_guard
from marginlens.models.decision import Decision, DecisionAction
from marginlens.models.order import Channel
from marginlens.schemas.decision import DecisionCreate, DecisionExplanation, PredictedImpact
from marginlens.services import statistics as stats
from marginlens.services.aggregates import (
    DEFAULT_PREP_TIME_MINUTES,
    DOGS,
    PLOWHORSES,
    PUZZLES,
    AggregateService,
    CapacitySummary,
    ChannelPerformance,
    MenuItemPerformance,
)
from marginlens.services.sales import SalesQueryService

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


def impact_range(impact: float, low: float, high: float) -> Tuple[float, float]:
    """Rounded [low x impact, high x impact], ordered so min <= max."""
    a, b = round(impact * low), round(impact * high)
    return float(min(a, b)), float(max(a, b))


class DecisionEngine:
    """Synthesizes prioritized decisions from current aggregates."""

    # Promote
    PROMOTE_VOLUME_LIFT = 0.45
    PROMOTE_RANGE = (0.7, 1.2)
    PROMOTE_CONFIDENCE = 75
    HIGH_MARGIN_THRESHOLD = 1000.0

    # Reprice
    REPRICE_INCREASE = 0.15
    REPRICE_VOLUME_LOSS = 0.25
    REPRICE_RANGE = (0.8, 1.1)
    REPRICE_CONFIDENCE = 70
    HIGH_VOLUME_ORDERS = 200

    # Remove
    REMOVE_PREP_THRESHOLD = 15
    DISHES_BLOCKED_PER_MINUTE = 2.3
    REMOVE_RANGE = (0.6, 1.4)
    REMOVE_CONFIDENCE = 65

    # Channel mix
    TARGET_AGGREGATOR_SHARE = 0.3
    MARGIN_CAPTURE = 0.5
    CHANNEL_RANGE = (0.7, 1.3)
    CHANNEL_CONFIDENCE = 75

    # Capacity
    PEAK_RATIO_TRIGGER = 2.0
    CAPACITY_IMPROVEMENT = 0.11
    CAPACITY_PEAK_HOURS = 3
    CAPACITY_RANGE = (0.8, 1.2)
    CAPACITY_CONFIDENCE = 65

    def __init__(self, db: Session):
        self.db = db
        self.sales = SalesQueryService(db)
        self.aggregates = AggregateService(db)
        self.settings = get_settings()

    def generate_decisions(
        self,
        restaurant_id: UUID,
        as_of: Optional[datetime] = None
    ) -> List[DecisionCreate]:
        """
        Build the current recommendation list for a restaurant.

        Nothing is persisted; pass the drafts to DecisionTracker.record_decision.
        Returns an empty list when the analysis window has no completed orders.
        """
        end = as_of or utc_now()
        window = self.settings.DECISION_ANALYSIS_WINDOW_DAYS

        with store_guard(self.db, "generate_decisions"):
            if self.sales.get_restaurant(restaurant_id) is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")

            start = end - timedelta(days=window)
            if self.sales.count_completed_orders(restaurant_id, start, end) == 0:
                logger.info(f"No completed orders for restaurant {restaurant_id}; no decisions")
                return []

            menu = self.aggregates.menu_engineering(restaurant_id, window, end)
            channels = self.aggregates.channel_metrics(restaurant_id, window, end)
            capacity = self.aggregates.capacity(restaurant_id, window, end)
            restaurant_revenue = self.sales.revenue(restaurant_id, start, end)

        decisions: List[DecisionCreate] = []
        for item in menu:
            decision = self.menu_decision(item)
            if decision is not None:
                decisions.append(decision)

        channel_decision = self.channel_decision(channels, restaurant_revenue)
        if channel_decision is not None:
            decisions.append(channel_decision)

        capacity_decision = self.capacity_decision(capacity, restaurant_revenue)
        if capacity_decision is not None:
            decisions.append(capacity_decision)

        decisions.sort(key=lambda d: (PRIORITY_ORDER[d.priority], -d.predicted_impact.max))
        logger.info(f"Generated {len(decisions)} decisions for restaurant {restaurant_id}")
        return decisions

    def menu_decision(self, item: MenuItemPerformance) -> Optional[DecisionCreate]:
        if item.quadrant == PUZZLES:
            return self.promote(item)
        if item.quadrant == PLOWHORSES and item.margin > 0:
            return self.reprice(item)
        if item.quadrant == DOGS and item.prep_time > self.REMOVE_PREP_THRESHOLD:
            return self.remove(item)
        return None

    def promote(self, item: MenuItemPerformance) -> DecisionCreate:
        projected_increase = item.orders * self.PROMOTE_VOLUME_LIFT
        impact = projected_increase * item.margin
        low, high = impact_range(impact, *self.PROMOTE_RANGE)
        after = item.revenue + projected_increase * item.price

        return DecisionCreate(
            action=DecisionAction.PROMOTE,
            category="Menu",
            entity_type="item",
            entity_id=item.menu_item_id,
            target=item.name,
            priority="high" if item.margin > self.HIGH_MARGIN_THRESHOLD else "medium",
            predicted_impact=PredictedImpact(
                min=low,
                max=high,
                confidence=self.PROMOTE_CONFIDENCE,
                revenue_change_pct=stats.percent_change(item.revenue, after),
                before_value=item.revenue,
                after_value=after,
            ),
            rationale=(
                f"High contribution margin ({item.margin:.0f}) with low popularity "
                f"({item.popularity:.0f}%). Strategic promotion can increase volume "
                f"without capacity strain."
            ),
            recommendation=(
                f"Run happy hour promotion 2-4pm with {round(item.price * 0.15)} off. "
                f"Expected 45% volume increase."
            ),
            risks=["May cannibalize similar items by 8-12%"],
        )

    def reprice(self, item: MenuItemPerformance) -> Optional[DecisionCreate]:
        price_increase = round(item.price * self.REPRICE_INCREASE)
        new_price = item.price + price_increase
        new_orders = item.orders * (1 - self.REPRICE_VOLUME_LOSS)
        new_margin = new_price - item.cost
        impact = new_orders * new_margin - item.orders * item.margin
        if impact <= 0:
            return None

        low, high = impact_range(impact, *self.REPRICE_RANGE)
        before = item.orders * item.price
        after = new_orders * new_price

        return DecisionCreate(
            action=DecisionAction.REPRICE,
            category="Menu",
            entity_type="item",
            entity_id=item.menu_item_id,
            target=item.name,
            priority="high" if item.orders > self.HIGH_VOLUME_ORDERS else "medium",
            predicted_impact=PredictedImpact(
                min=low,
                max=high,
                confidence=self.REPRICE_CONFIDENCE,
                revenue_change_pct=stats.percent_change(before, after),
                before_value=before,
                after_value=after,
            ),
            rationale=(
                f"Popularity index of {item.popularity:.0f}% but contribution margin only "
                f"{item.margin:.0f}. A +{price_increase} increase is expected to keep "
                f"{(1 - self.REPRICE_VOLUME_LOSS) * 100:.0f}% of volume."
            ),
            recommendation=(
                f"Increase price from {item.price:.0f} to {new_price:.0f}. Monitor first week closely."
            ),
            risks=["Could reduce orders by 25-30%", "Competition pricing may be lower"],
        )

    def remove(self, item: MenuItemPerformance) -> Optional[DecisionCreate]:
        opportunity_cost = item.prep_time * item.orders * self.DISHES_BLOCKED_PER_MINUTE
        impact = opportunity_cost - item.orders * item.margin
        if impact <= 0:
            return None

        low, high = impact_range(impact, *self.REMOVE_RANGE)

        return DecisionCreate(
            action=DecisionAction.REMOVE,
            category="Menu",
            entity_type="item",
            entity_id=item.menu_item_id,
            target=item.name,
            priority="medium",
            predicted_impact=PredictedImpact(
                min=low,
                max=high,
                confidence=self.REMOVE_CONFIDENCE,
                revenue_change_pct=-100.0 if item.revenue > 0 else 0.0,
                before_value=item.revenue,
                after_value=0.0,
            ),
            rationale=(
                f"Kitchen bottleneck: {item.prep_time}-min prep time blocks "
                f"{round(item.prep_time / 8)} other dishes during peak. Only {item.orders} "
                f"orders with {item.margin:.0f} margin doesn't justify the opportunity cost."
            ),
            recommendation=(
                f"Replace with a {round(item.prep_time * 0.5)}-min prep dish. Free up "
                f"{round(item.prep_time * item.orders)} min of peak kitchen capacity."
            ),
            risks=["May disappoint regular customers"],
        )

    def channel_decision(
        self,
        channels: List[ChannelPerformance],
        restaurant_revenue: float
    ) -> Optional[DecisionCreate]:
        direct = next((c for c in channels if c.channel == Channel.DELIVERY_DIRECT.value), None)
        aggregators = [c for c in channels if c.is_aggregator]
        if direct is None or not aggregators:
            return None

        aggregator_margin_pct = stats.mean(c.net_margin_percent for c in aggregators)
        if direct.net_margin_percent <= aggregator_margin_pct:
            return None

        aggregator_revenue = sum(c.total_revenue for c in aggregators)
        delivery_revenue = aggregator_revenue + direct.total_revenue
        if delivery_revenue <= 0:
            return None

        current_share = aggregator_revenue / delivery_revenue
        impact = (current_share - self.TARGET_AGGREGATOR_SHARE) * aggregator_revenue * self.MARGIN_CAPTURE
        if impact <= 0:
            return None

        low, high = impact_range(impact, *self.CHANNEL_RANGE)

        return DecisionCreate(
            action=DecisionAction.OPTIMIZE,
            category="Channel",
            entity_type="channel",
            target="Delivery Channel Mix",
            priority="high",
            predicted_impact=self._restaurant_impact(low, high, self.CHANNEL_CONFIDENCE, impact, restaurant_revenue),
            rationale=(
                f"Direct ordering net margin is {direct.net_margin_percent:.0f}% vs aggregators "
                f"at {aggregator_margin_pct:.0f}%. Aggregators carry {current_share * 100:.0f}% "
                f"of delivery revenue."
            ),
            recommendation="Launch loyalty program for direct orders. Target 70/30 split in 8 weeks.",
            risks=["May reduce total order volume by 15%", "Requires marketing spend"],
        )

    def capacity_decision(
        self,
        capacity: CapacitySummary,
        restaurant_revenue: float
    ) -> Optional[DecisionCreate]:
        peak, off_peak = capacity.peak_rev_pash, capacity.off_peak_rev_pash
        if peak is None or off_peak is None:
            return None
        if peak <= off_peak * self.PEAK_RATIO_TRIGGER:
            return None

        impact = (peak - off_peak) * self.CAPACITY_IMPROVEMENT * capacity.seats * self.CAPACITY_PEAK_HOURS
        low, high = impact_range(impact, *self.CAPACITY_RANGE)
        ratio = f"{peak / off_peak * 100:.0f}%" if off_peak > 0 else "far"

        return DecisionCreate(
            action=DecisionAction.OPTIMIZE,
            category="Operations",
            entity_type="restaurant",
            target="Peak Hour Capacity",
            priority="medium",
            predicted_impact=self._restaurant_impact(low, high, self.CAPACITY_CONFIDENCE, impact, restaurant_revenue),
            rationale=(
                f"Peak hours (6-9 PM) show {ratio} higher RevPASH than off-peak. "
                f"Capacity optimization can improve table turnover."
            ),
            recommendation="Optimize table allocation and server scheduling during peak hours.",
            risks=["May require staffing adjustments"],
        )

    @staticmethod
    def _restaurant_impact(
        low: float,
        high: float,
        confidence: int,
        impact: float,
        restaurant_revenue: float
    ) -> PredictedImpact:
        return PredictedImpact(
            min=low,
            max=high,
            confidence=confidence,
            revenue_change_pct=impact / restaurant_revenue * 100 if restaurant_revenue > 0 else 0.0,
            before_value=restaurant_revenue,
            after_value=restaurant_revenue + impact,
        )

    def explain_decision(self, decision: Decision) -> DecisionExplanation:
        """Owner-friendly explanation of a stored decision with next steps."""
        impact = PredictedImpact.model_validate(decision.predicted_impact)
        money = f"{impact.min:,.0f} to {impact.max:,.0f}"
        item = None
        if decision.entity_type == "item" and decision.entity_id is not None:
            item = self.sales.get_menu_item(decision.entity_id)

        price = float(item.price) if item else 0.0
        margin = float(item.price - item.cost_price) if item else 0.0
        prep_time = (item.prep_time_minutes if item else None) or DEFAULT_PREP_TIME_MINUTES

        action = decision.action
        if action == DecisionAction.PROMOTE.value:
            summary = (
                f'Your "{decision.target}" dish is a hidden gem: it earns good money '
                f"({money} potential monthly profit) but not many customers know about it yet."
            )
            reasoning = (
                f"Each order brings in {margin:.0f} profit. Running a promotion in slower hours "
                f"(2-4pm) adds volume without overloading the kitchen at peak."
            )
            next_steps = [
                "Pick a 2-hour off-peak slot for the promotion",
                "Brief servers to recommend the dish",
                "Review sales after one week",
            ]
        elif action == DecisionAction.REPRICE.value:
            increase = round(price * self.REPRICE_INCREASE)
            summary = (
                f'Your "{decision.target}" is very popular, but you are not making as much '
                f"profit from it as you could be."
            )
            reasoning = (
                f"It sells for {price:.0f}. Raising the price by {increase} still earns more "
                f"overall even if 25% of customers stop ordering it, because the rest pay more."
            )
            next_steps = [
                f"Update the menu price to {price + increase:.0f}",
                "Watch daily orders closely for the first week",
                "Roll back if orders drop more than 30%",
            ]
        elif action == DecisionAction.REMOVE.value:
            summary = (
                f'Your "{decision.target}" dish takes up valuable kitchen time during your '
                f"busiest hours without making enough money to justify it."
            )
            reasoning = (
                f"It takes {prep_time} minutes to prepare, time in which the kitchen could "
                f"make 2-3 other dishes that earn more."
            )
            next_steps = [
                f"Design a replacement dish under {round(prep_time * 0.5)} minutes of prep",
                "Tell regular customers about the change",
                "Remove the dish from the menu",
            ]
        elif decision.category == "Channel":
            summary = (
                "Delivery apps take a large cut of every order, while direct orders keep "
                "that margin in the restaurant."
            )
            reasoning = (
                "Moving more delivery customers to direct ordering (website or phone) keeps "
                "the platform commission as profit."
            )
            next_steps = [
                "Offer loyalty points or a small discount for direct orders",
                "Add direct-order flyers to aggregator deliveries",
                "Track the aggregator share every week",
            ]
        else:
            summary = (
                "During your busiest hours (6-9 PM) you make much more money per seat than "
                "during slower times."
            )
            reasoning = (
                "Better table allocation and staff scheduling at peak lets you seat more "
                "guests in the hours that earn the most."
            )
            next_steps = [
                "Add a server to the 6-9 PM shift",
                "Seat small parties at small tables during peak",
                "Compare peak RevPASH after two weeks",
            ]

        return DecisionExplanation(
            decision_id=decision.id,
            summary=summary,
            reasoning=reasoning,
            expected_outcome=(
                f"Expected impact: {money} per month "
                f"({impact.revenue_change_pct:+.1f}% revenue), confidence {impact.confidence}%."
            ),
            risks=list(decision.risks or []),
            next_steps=next_steps,
        )
