"""
What-if simulation: single-item price changes and multi-lever scenarios.

    volume_change = -price_change x elasticity
    new_units     = units x (1 + volume_change)
    new_revenue   = price x (1 + price_change) x new_units
    new_profit    = (new_price - cost) x new_units

Elasticity is resolved in order: explicit override, |latest baseline
elasticity|, the item's stored coefficient, then DEFAULT_PRICE_ELASTICITY.

A scenario combines levers (price, channel mix, staffing hours, trading
hours) and sums their deltas against one restaurant-wide baseline.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from marginlens.core.business_day import utc_now
from marginlens.core.config import get_settings
from marginlens.core.errors import NotFound, store_guard
from marginlens.models.menu import MenuItem
from marginlens.models.order import Channel
from marginlens.services.baseline import BaselineService
from marginlens.services.sales import SalesQueryService

logger = logging.getLogger(__name__)


@dataclass
class PriceSimulation:
    menu_item_id: UUID
    current_price: float
    new_price: float
    elasticity: float
    elasticity_source: str  # override, baseline, item, default
    volume_change_pct: float
    baseline_units: float
    projected_units: float
    baseline_revenue: float
    projected_revenue: float
    revenue_delta: float
    baseline_profit: float
    projected_profit: float
    profit_delta: float
    confidence: int
    risks: List[str] = field(default_factory=list)


@dataclass
class ScenarioSimulation:
    """Restaurant-wide projection for a combination of levers over the analysis window."""
    levers: List[str]
    baseline_revenue: float
    projected_revenue: float
    revenue_delta: float
    baseline_profit: float
    projected_profit: float
    profit_delta: float
    baseline_orders: int
    projected_orders: int
    orders_delta: int
    confidence: int
    risks: List[str] = field(default_factory=list)


class SimulationService:
    """Projects revenue and profit for hypothetical price, channel, staffing and hours changes."""

    AGGRESSIVE_VOLUME_CHANGE = 0.3
    BASE_CONFIDENCE = 80
    LOW_VOLUME_ORDERS = 100
    VERY_LOW_VOLUME_ORDERS = 50
    LOW_VOLUME_PENALTY = 20
    MANY_RISKS = 2
    MANY_RISKS_PENALTY = 10
    CONFIDENCE_BOUNDS = (50, 95)

    DEFAULT_OPEN_HOUR = 11
    DEFAULT_CLOSE_HOUR = 23
    LOST_HOURS_SALES_SHARE = 0.8  # share of a closed hour's sales that is lost
    EXTRA_HOURS_EFFICIENCY = 0.6
    EXTRA_HOURS_PROFIT_EFFICIENCY = 0.5
    STAFF_CUT_WARNING = -20

    def __init__(self, db: Session):
        self.db = db
        self.sales = SalesQueryService(db)
        self.baselines = BaselineService(db)
        self.settings = get_settings()

    def resolve_elasticity(
        self,
        item: MenuItem,
        override_elasticity: Optional[float] = None
    ) -> Tuple[float, str]:
        if override_elasticity is not None:
            return float(override_elasticity), "override"

        baseline = self.baselines.get_latest_baseline(item.id)
        if baseline is not None and baseline.price_elasticity is not None:
            return abs(baseline.price_elasticity), "baseline"

        if item.price_elasticity is not None:
            return float(item.price_elasticity), "item"

        return self.settings.DEFAULT_PRICE_ELASTICITY, "default"

    def confidence(self, order_count: int, risk_count: int = 0) -> int:
        """Confidence in a projection, lowered for thin order history and for many risks."""
        confidence = self.BASE_CONFIDENCE
        if order_count < self.LOW_VOLUME_ORDERS:
            confidence -= self.LOW_VOLUME_PENALTY
        if order_count < self.VERY_LOW_VOLUME_ORDERS:
            confidence -= self.LOW_VOLUME_PENALTY
        if risk_count > self.MANY_RISKS:
            confidence -= self.MANY_RISKS_PENALTY
        low, high = self.CONFIDENCE_BOUNDS
        return max(low, min(high, confidence))

    def simulate_price_change(
        self,
        menu_item_id: UUID,
        price_change: float,
        override_elasticity: Optional[float] = None,
        as_of: Optional[datetime] = None
    ) -> PriceSimulation:
        """
        Project one item's units, revenue and profit after a price change.

        Args:
            price_change: Relative change as a fraction (0.10 = +10%)
            override_elasticity: Use this elasticity instead of the measured one
        """
        end = as_of or utc_now()
        start = end - timedelta(days=self.settings.DECISION_ANALYSIS_WINDOW_DAYS)

        with store_guard(self.db, "simulate_price_change"):
            item = self.sales.get_menu_item(menu_item_id)
            if item is None:
                raise NotFound(f"Menu item {menu_item_id} not found")

            elasticity, source = self.resolve_elasticity(item, override_elasticity)
            item_sales = self.sales.period_sales(item.restaurant_id, start, end, menu_item_id)
            restaurant_orders = self.sales.count_completed_orders(item.restaurant_id, start, end)

        sales = item_sales.items.get(menu_item_id)
        units = sales.quantity if sales else 0.0
        revenue = sales.revenue if sales else 0.0
        cost = float(item.cost_price)
        profit = revenue - cost * units

        volume_change = -price_change * elasticity
        new_price = float(item.price) * (1 + price_change)
        new_units = max(0.0, units * (1 + volume_change))
        new_revenue = new_price * new_units
        new_profit = (new_price - cost) * new_units

        risks = []
        if abs(volume_change) > self.AGGRESSIVE_VOLUME_CHANGE:
            risks.append(f"Volume change of {round(volume_change * 100)}% may be too aggressive")

        confidence = self.confidence(restaurant_orders)

        logger.debug(
            f"Simulated {price_change:+.0%} on {item.name}: elasticity {elasticity:.2f} ({source}), "
            f"volume {volume_change:+.0%}"
        )

        return PriceSimulation(
            menu_item_id=menu_item_id,
            current_price=float(item.price),
            new_price=new_price,
            elasticity=elasticity,
            elasticity_source=source,
            volume_change_pct=volume_change * 100,
            baseline_units=units,
            projected_units=new_units,
            baseline_revenue=revenue,
            projected_revenue=new_revenue,
            revenue_delta=new_revenue - revenue,
            baseline_profit=profit,
            projected_profit=new_profit,
            profit_delta=new_profit - profit,
            confidence=confidence,
            risks=risks,
        )

    def run_scenario(
        self,
        restaurant_id: UUID,
        menu_item_id: Optional[UUID] = None,
        price_change: Optional[float] = None,
        override_elasticity: Optional[float] = None,
        channel_mix: Optional[Dict[str, float]] = None,
        staffing_hours_change: Optional[float] = None,
        open_hour: Optional[int] = None,
        close_hour: Optional[int] = None,
        as_of: Optional[datetime] = None
    ) -> ScenarioSimulation:
        """
        Project restaurant revenue, profit and orders under several levers at once.

        Every lever is measured against the same baseline (completed orders in
        the analysis window) and the lever deltas are summed:

        - price_change on menu_item_id: the item's simulated units, revenue
          and profit replace its actual ones
        - channel_mix: target revenue share in percent per channel; each
          listed channel's revenue moves by (target - current share) percent
          and unlisted channels drop out
        - staffing_hours_change: percent change in staffed hours scales
          orders, revenue and profit alike
        - open_hour/close_hour: trading hours against 11:00-23:00; a closed
          hour loses LOST_HOURS_SALES_SHARE of its sales, an extra hour
          earns at EXTRA_HOURS_EFFICIENCY (profit at EXTRA_HOURS_PROFIT_EFFICIENCY)

        Raises:
            ValueError: price change without an item, unknown channel, or
                trading hours that do not close after opening
            NotFound: unknown restaurant, or an item of another restaurant
        """
        if price_change is not None and menu_item_id is None:
            raise ValueError("A price change needs a menu item")
        mix = {Channel(channel).value: float(share) for channel, share in (channel_mix or {}).items()}
        hours_changed = open_hour is not None or close_hour is not None
        open_hour = self.DEFAULT_OPEN_HOUR if open_hour is None else open_hour
        close_hour = self.DEFAULT_CLOSE_HOUR if close_hour is None else close_hour
        if not 0 <= open_hour < close_hour <= 24:
            raise ValueError(f"Trading hours {open_hour}-{close_hour} must open before they close, within 0-24")

        end = as_of or utc_now()
        start = end - timedelta(days=self.settings.DECISION_ANALYSIS_WINDOW_DAYS)

        with store_guard(self.db, "run_scenario"):
            if self.sales.get_restaurant(restaurant_id) is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")
            if price_change is not None:
                item = self.sales.get_menu_item(menu_item_id)
                if item is None or item.restaurant_id != restaurant_id:
                    raise NotFound(f"Menu item {menu_item_id} not found")
            orders = self.sales.completed_orders(restaurant_id, start, end, with_items=True)

        baseline_orders = len(orders)
        baseline_revenue = sum(float(o.total_amount) for o in orders)
        baseline_profit = sum(
            (float(line.unit_price) - float(line.menu_item.cost_price)) * line.quantity
            for o in orders for line in o.items
        )

        levers: List[str] = []
        risks: List[str] = []
        revenue_delta = profit_delta = orders_delta = 0.0

        if price_change is not None:
            levers.append("price")
            price = self.simulate_price_change(menu_item_id, price_change, override_elasticity, as_of=end)
            revenue_delta += price.revenue_delta
            profit_delta += price.profit_delta
            orders_delta += price.projected_units - price.baseline_units
            risks.extend(price.risks)

        if mix:
            levers.append("channel_mix")
            if abs(sum(mix.values()) - 100) > 1:
                risks.append("Channel mix percentages don't sum to 100%")
            by_channel: Dict[str, float] = {}
            for o in orders:
                by_channel[o.channel] = by_channel.get(o.channel, 0.0) + float(o.total_amount)
            projected = 0.0
            for channel, target_share in mix.items():
                channel_revenue = by_channel.get(channel, 0.0)
                current_share = channel_revenue / baseline_revenue * 100 if baseline_revenue > 0 else 0.0
                projected += channel_revenue * (1 + (target_share - current_share) / 100)
            revenue_delta += projected - baseline_revenue

        if staffing_hours_change is not None:
            levers.append("staffing")
            factor = staffing_hours_change / 100
            revenue_delta += baseline_revenue * factor
            profit_delta += baseline_profit * factor
            orders_delta += baseline_orders * factor
            if staffing_hours_change < self.STAFF_CUT_WARNING:
                risks.append("Significant reduction in staffing may impact service quality")

        if hours_changed:
            levers.append("hours")
            current_hours = self.DEFAULT_CLOSE_HOUR - self.DEFAULT_OPEN_HOUR
            new_hours = close_hour - open_hour
            change = (new_hours - current_hours) / current_hours
            if change < 0:
                revenue_delta += baseline_revenue * change * self.LOST_HOURS_SALES_SHARE
                profit_delta += baseline_profit * change * self.LOST_HOURS_SALES_SHARE
                orders_delta += baseline_orders * change * self.LOST_HOURS_SALES_SHARE
                risks.append("Reducing hours may impact customer convenience")
            elif change > 0:
                revenue_delta += baseline_revenue * change * self.EXTRA_HOURS_EFFICIENCY
                profit_delta += baseline_profit * change * self.EXTRA_HOURS_PROFIT_EFFICIENCY
                orders_delta += baseline_orders * change * self.EXTRA_HOURS_EFFICIENCY
                risks.append("Extended hours may have lower efficiency")

        projected_orders = max(0, round(baseline_orders + orders_delta))
        logger.info(
            f"Scenario for restaurant {restaurant_id} ({', '.join(levers) or 'no levers'}): "
            f"revenue {revenue_delta:+.2f}, profit {profit_delta:+.2f}"
        )

        return ScenarioSimulation(
            levers=levers,
            baseline_revenue=round(baseline_revenue, 2),
            projected_revenue=round(baseline_revenue + revenue_delta, 2),
            revenue_delta=round(revenue_delta, 2),
            baseline_profit=round(baseline_profit, 2),
            projected_profit=round(baseline_profit + profit_delta, 2),
            profit_delta=round(profit_delta, 2),
            baseline_orders=baseline_orders,
            projected_orders=projected_orders,
            orders_delta=projected_orders - baseline_orders,
            confidence=self.confidence(baseline_orders, len(risks)),
            risks=risks,
        )
