"""
Menu, channel, capacity, server and new-dish aggregates over completed orders.

These are the inputs of the decision engine and are also served directly
as analytics reports.

Menu engineering quadrants (popularity 0-100, margin = price - cost):

    | Popularity | Margin        | Quadrant   |
    |------------|---------------|------------|
    | >= 50      | >= threshold  | Stars      |
    | >= 50      | <  threshold  | Plowhorses |
    | <  50      | >= threshold  | Puzzles    |
    | <  50      | <  threshold  | Dogs       |

    popularity = min(100, orders / avg_orders_per_item x 50)

so an item sold exactly at the per-item average lands on 50 (a "high" item).

RevPASH (revenue per available seat hour) for a window of hours:

    RevPASH = window revenue / (hours with orders x seats)
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional
from uuid import UUID

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from marginlens.core.business_day import get_business_date, local_hour, to_local, utc_now
from marginlens.core.config import get_settings
from marginlens.core.errors import NotFound, store_guard
from marginlens.models.menu import MenuItem, Server
from marginlens.models.order import Channel, Order
from marginlens.services.sales import SalesQueryService


STARS = "Stars"
PLOWHORSES = "Plowhorses"
PUZZLES = "Puzzles"
DOGS = "Dogs"

MARGIN_THRESHOLD = 680.0
POPULARITY_THRESHOLD = 50.0
DEFAULT_PREP_TIME_MINUTES = 10

PLATFORM_FEES = {
    Channel.DELIVERY_ZOMATO.value: 0.25,
    Channel.DELIVERY_SWIGGY.value: 0.25,
    Channel.DELIVERY_DOORDASH.value: 0.30,
    Channel.BOOKING.value: 0.05,
    Channel.WALK_IN.value: 0.0,
    Channel.DELIVERY_DIRECT.value: 0.0,
}

# Customer acquisition cost per order
ACQUISITION_COSTS = {
    Channel.WALK_IN.value: 0.0,
    Channel.BOOKING.value: 400.0,
    Channel.DELIVERY_DIRECT.value: 680.0,
    Channel.DELIVERY_ZOMATO.value: 1200.0,
    Channel.DELIVERY_SWIGGY.value: 1150.0,
    Channel.DELIVERY_DOORDASH.value: 1300.0,
}

# No customer identity in POS data, so repeat rate is estimated per channel
ESTIMATED_REPEAT_RATES = {
    Channel.WALK_IN.value: 45.0,
    Channel.BOOKING.value: 65.0,
    Channel.DELIVERY_DIRECT.value: 78.0,
    Channel.DELIVERY_ZOMATO.value: 22.0,
    Channel.DELIVERY_SWIGGY.value: 24.0,
    Channel.DELIVERY_DOORDASH.value: 20.0,
}

PEAK_HOURS = range(18, 22)  # 18:00-21:59
OFF_PEAK_HOURS = range(14, 18)  # 14:00-17:59


def classify_quadrant(popularity: float, margin: float, margin_threshold: float = MARGIN_THRESHOLD) -> str:
    """Assign exactly one quadrant; values on a threshold go to the high side."""
    popular = popularity >= POPULARITY_THRESHOLD
    profitable = margin >= margin_threshold
    if popular and profitable:
        return STARS
    if popular:
        return PLOWHORSES
    if profitable:
        return PUZZLES
    return DOGS


def popularity_index(orders: float, avg_orders_per_item: float) -> float:
    if avg_orders_per_item <= 0:
        return 0.0
    return min(100.0, orders / avg_orders_per_item * 50)


@dataclass
class MenuItemPerformance:
    menu_item_id: UUID
    name: str
    category: str
    price: float
    cost: float
    orders: int
    revenue: float
    margin: float
    popularity: float
    prep_time: int
    revenue_per_minute: float
    quadrant: str


@dataclass
class ChannelPerformance:
    channel: str
    total_orders: int
    total_revenue: float
    gross_margin: float
    platform_fees: float
    customer_acquisition_cost: float
    net_margin: float
    net_margin_percent: float
    avg_order_value: float
    repeat_rate: float
    lifetime_value: float
    ltv_cac_ratio: float

    @property
    def is_aggregator(self) -> bool:
        try:
            return Channel(self.channel).is_aggregator
        except ValueError:
            return False


@dataclass
class HourSlot:
    hour: int
    orders: int
    revenue: float
    capacity: int
    utilization_percent: float
    rev_pash: float


@dataclass
class CapacitySummary:
    seats: int
    time_slots: List[HourSlot]
    peak_rev_pash: Optional[float]
    off_peak_rev_pash: Optional[float]


@dataclass
class ServerPerformance:
    server_id: UUID
    name: str
    is_active: bool
    total_orders: int
    total_revenue: float
    avg_check_size: float
    upsell_rate: float
    avg_service_time: float
    shifts_worked: int
    hours_worked: int
    avg_shift_difficulty: float
    fatigue_adjustment: float
    effectiveness_score: int


@dataclass
class NewDishPerformance:
    menu_item_id: UUID
    name: str
    launched_at: datetime
    days_since_launch: int
    total_orders: int
    order_lines: int
    repeat_rate: float
    avg_orders_per_day: float
    revenue: float
    profit: float
    break_even_target: float
    break_even_days: Optional[int]
    break_even_status: str
    early_failure_signals: List[str] = field(default_factory=list)


@dataclass
class DailyRevenue:
    business_date: date
    orders: int
    revenue: float


def window_rev_pash(slots: List[HourSlot], hours: range, seats: int) -> Optional[float]:
    """RevPASH across the hours of a window that had orders; None when none did."""
    in_window = [s for s in slots if s.hour in hours]
    if not in_window or seats <= 0:
        return None
    return sum(s.revenue for s in in_window) / (len(in_window) * seats)


SHIFT_HOURS = 8
UPSELL_UNITS = 2  # orders with more units than this count as upsold
SERVICE_BASE_MINUTES = 10
SERVICE_MINUTES_PER_UNIT = 2
SERVICE_PEAK_HOURS = (range(12, 14), range(18, 21))

NEW_DISH_WINDOW_DAYS = 90
BREAK_EVEN_COST_MULTIPLE = 3


def shift_difficulty(local_time: datetime) -> float:
    """Weight of the conditions an order was served in; peak hours and weekends are harder."""
    peak = any(local_time.hour in hours for hours in SERVICE_PEAK_HOURS)
    weekend = local_time.weekday() >= 5
    if peak and weekend:
        return 1.5
    if peak:
        return 1.3
    if weekend:
        return 1.2
    return 1.0


def fatigue_adjustment(hours_worked: float) -> float:
    if hours_worked <= 6:
        return 1.0
    if hours_worked <= 8:
        return 0.95
    if hours_worked <= 10:
        return 0.85
    return 0.75


def break_even_status(days_since_launch: int, profit: float, target: float) -> str:
    if profit >= target:
        return "achieved"
    if days_since_launch < 30 and profit > target * 0.3:
        return "on-track"
    if days_since_launch >= 30 and profit < target * 0.5:
        return "at-risk"
    return "failed"


def early_failure_signals(
    days_since_launch: int,
    units: int,
    repeat_rate: float,
    avg_orders_per_day: float,
    profit: float,
    target: float
) -> List[str]:
    signals = []
    if days_since_launch >= 14 and units < 5:
        signals.append("Very low adoption after 2 weeks")
    if repeat_rate < 10 and units > 10:
        signals.append("Low repeat rate indicates poor customer satisfaction")
    if avg_orders_per_day < 0.5 and days_since_launch >= 7:
        signals.append("Declining daily orders")
    if profit < 0:
        signals.append("Negative profit margin")
    if days_since_launch >= 30 and profit < target * 0.3:
        signals.append("Not on track to break even")
    return signals


class AggregateService:
    """Computes the menu, channel and capacity views over an analysis window."""

    def __init__(self, db: Session):
        self.db = db
        self.sales = SalesQueryService(db)
        self.settings = get_settings()

    def _window(self, window_days: Optional[int], as_of: Optional[datetime]):
        end = as_of or utc_now()
        days = window_days or self.settings.DECISION_ANALYSIS_WINDOW_DAYS
        return end - timedelta(days=days), end

    def menu_engineering(
        self,
        restaurant_id: UUID,
        window_days: Optional[int] = None,
        as_of: Optional[datetime] = None
    ) -> List[MenuItemPerformance]:
        """Per active item sales, margin, popularity and quadrant."""
        start, end = self._window(window_days, as_of)

        with store_guard(self.db, "menu_engineering"):
            items = self.db.execute(
                select(MenuItem)
                .where(MenuItem.restaurant_id == restaurant_id, MenuItem.is_active == True)
                .order_by(MenuItem.name)
            ).scalars().all()
            sales = self.sales.period_sales(restaurant_id, start, end)

        if not items:
            return []

        total_units = sum(sales.items[i.id].quantity for i in items if i.id in sales.items)
        avg_orders_per_item = total_units / len(items)

        results = []
        for item in items:
            item_sales = sales.items.get(item.id)
            orders = int(item_sales.quantity) if item_sales else 0
            revenue = item_sales.revenue if item_sales else 0.0
            price = float(item.price)
            cost = float(item.cost_price)
            margin = price - cost
            popularity = popularity_index(orders, avg_orders_per_item)
            prep_time = item.prep_time_minutes or DEFAULT_PREP_TIME_MINUTES

            results.append(MenuItemPerformance(
                menu_item_id=item.id,
                name=item.name,
                category=item.category,
                price=price,
                cost=cost,
                orders=orders,
                revenue=revenue,
                margin=margin,
                popularity=popularity,
                prep_time=prep_time,
                revenue_per_minute=margin / prep_time if prep_time > 0 else 0.0,
                quadrant=classify_quadrant(popularity, margin),
            ))
        return results

    def channel_metrics(
        self,
        restaurant_id: UUID,
        window_days: Optional[int] = None,
        as_of: Optional[datetime] = None
    ) -> List[ChannelPerformance]:
        """Profitability per sales channel, net of platform fees and acquisition cost."""
        start, end = self._window(window_days, as_of)

        with store_guard(self.db, "channel_metrics"):
            orders = self.sales.completed_orders(restaurant_id, start, end, with_items=True)

            by_channel: Dict[str, Dict] = {}
            for order in orders:
                data = by_channel.setdefault(order.channel, {"orders": 0, "revenue": 0.0, "gross": 0.0})
                data["orders"] += 1
                data["revenue"] += float(order.total_amount)
                data["gross"] += sum(
                    (float(line.unit_price) - float(line.menu_item.cost_price)) * line.quantity
                    for line in order.items
                )

        results = []
        for channel, data in sorted(by_channel.items()):
            total_orders = data["orders"]
            revenue = data["revenue"]
            platform_fees = revenue * PLATFORM_FEES.get(channel, 0.0)
            cac = ACQUISITION_COSTS.get(channel, 0.0) * total_orders
            net_margin = data["gross"] - platform_fees - cac
            aov = revenue / total_orders if total_orders else 0.0

            repeat_rate = ESTIMATED_REPEAT_RATES.get(channel, 20.0)
            orders_per_month = 4 if repeat_rate > 50 else 2 if repeat_rate > 30 else 1
            ltv = aov * orders_per_month * 12

            results.append(ChannelPerformance(
                channel=channel,
                total_orders=total_orders,
                total_revenue=revenue,
                gross_margin=data["gross"],
                platform_fees=platform_fees,
                customer_acquisition_cost=cac,
                net_margin=net_margin,
                net_margin_percent=round(net_margin / revenue * 100, 2) if revenue > 0 else 0.0,
                avg_order_value=round(aov, 2),
                repeat_rate=repeat_rate,
                lifetime_value=round(ltv, 2),
                ltv_cac_ratio=round(ltv / cac, 2) if cac > 0 else 0.0,
            ))
        return results

    def capacity(
        self,
        restaurant_id: UUID,
        window_days: Optional[int] = None,
        as_of: Optional[datetime] = None
    ) -> CapacitySummary:
        """Hourly demand against seating and peak/off-peak RevPASH."""
        start, end = self._window(window_days, as_of)

        with store_guard(self.db, "capacity"):
            restaurant = self.sales.get_restaurant(restaurant_id)
            if restaurant is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")
            orders = self.sales.completed_orders(restaurant_id, start, end)

        seats = restaurant.seat_count or self.settings.DEFAULT_SEAT_COUNT

        by_hour: Dict[int, List[Order]] = {}
        for order in orders:
            by_hour.setdefault(local_hour(order.ordered_at, restaurant.timezone), []).append(order)

        slots = []
        for hour in sorted(by_hour):
            hour_orders = by_hour[hour]
            revenue = sum(float(o.total_amount) for o in hour_orders)
            slots.append(HourSlot(
                hour=hour,
                orders=len(hour_orders),
                revenue=revenue,
                capacity=seats,
                utilization_percent=round(min(100.0, len(hour_orders) / seats * 100), 2),
                rev_pash=round(revenue / seats, 2),
            ))

        return CapacitySummary(
            seats=seats,
            time_slots=slots,
            peak_rev_pash=window_rev_pash(slots, PEAK_HOURS, seats),
            off_peak_rev_pash=window_rev_pash(slots, OFF_PEAK_HOURS, seats),
        )

    def server_performance(
        self,
        restaurant_id: UUID,
        window_days: Optional[int] = None,
        as_of: Optional[datetime] = None
    ) -> List[ServerPerformance]:
        """
        Sales per server with an effectiveness score normalized for shift conditions.

        A shift is a business day the server took orders on, counted as
        SHIFT_HOURS. The score is revenue per hour divided by the average
        shift difficulty, scaled by the fatigue adjustment for the hours
        worked, capped at 100. Empty when the window has no orders.
        """
        start, end = self._window(window_days, as_of)

        with store_guard(self.db, "server_performance"):
            restaurant = self.sales.get_restaurant(restaurant_id)
            if restaurant is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")
            servers = self.db.execute(
                select(Server).where(Server.restaurant_id == restaurant_id).order_by(Server.name)
            ).scalars().all()
            orders = self.sales.completed_orders(restaurant_id, start, end, with_items=True)

        if not orders:
            return []

        by_server: Dict[UUID, List[Order]] = {}
        for order in orders:
            if order.server_id is not None:
                by_server.setdefault(order.server_id, []).append(order)

        return [
            self._server_summary(server, by_server.get(server.id, []), restaurant.timezone)
            for server in servers
        ]

    def _server_summary(self, server: Server, orders: List[Order], restaurant_timezone: Optional[str]) -> ServerPerformance:
        total_orders = len(orders)
        revenue = sum(float(o.total_amount) for o in orders)
        units = [sum(line.quantity for line in o.items) for o in orders]

        shifts = len({get_business_date(o.ordered_at, restaurant_timezone) for o in orders})
        hours = shifts * SHIFT_HOURS
        fatigue = fatigue_adjustment(hours)

        if total_orders:
            difficulty = sum(shift_difficulty(to_local(o.ordered_at, restaurant_timezone)) for o in orders) / total_orders
            score = min(100, round(revenue / hours / difficulty * fatigue * 0.1))
            avg_check = revenue / total_orders
            upsell_rate = sum(1 for u in units if u > UPSELL_UNITS) / total_orders * 100
            service_time = sum(SERVICE_BASE_MINUTES + u * SERVICE_MINUTES_PER_UNIT for u in units) / total_orders
        else:
            difficulty, score, avg_check, upsell_rate, service_time = 1.0, 0, 0.0, 0.0, 0.0

        return ServerPerformance(
            server_id=server.id,
            name=server.name,
            is_active=server.is_active,
            total_orders=total_orders,
            total_revenue=round(revenue, 2),
            avg_check_size=round(avg_check, 2),
            upsell_rate=round(upsell_rate, 2),
            avg_service_time=round(service_time, 2),
            shifts_worked=shifts,
            hours_worked=hours,
            avg_shift_difficulty=round(difficulty, 3),
            fatigue_adjustment=fatigue,
            effectiveness_score=int(score),
        )

    def new_dish_performance(self, restaurant_id: UUID, as_of: Optional[datetime] = None) -> List[NewDishPerformance]:
        """
        Launch tracking for dishes introduced in the last NEW_DISH_WINDOW_DAYS.

        A dish is new when its launch_date falls in the window or, without a
        launch date, when it sold in the window; its launch is then its first
        completed sale. Newest launches come first.
        """
        now = as_of or utc_now()
        cutoff = now - timedelta(days=NEW_DISH_WINDOW_DAYS)

        with store_guard(self.db, "new_dish_performance"):
            if self.sales.get_restaurant(restaurant_id) is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")
            items = self.db.execute(
                select(MenuItem).where(MenuItem.restaurant_id == restaurant_id).order_by(MenuItem.name)
            ).scalars().all()
            lines = self.sales.item_sale_lines(restaurant_id, now)

        by_item: Dict[UUID, List] = {}
        for line in lines:
            by_item.setdefault(line.menu_item_id, []).append(line)

        results = []
        for item in items:
            item_lines = by_item.get(item.id, [])
            if item.launch_date is not None:
                launched_at = datetime.combine(item.launch_date, time())
                if launched_at < cutoff:
                    continue
            elif any(line.ordered_at >= cutoff for line in item_lines):
                launched_at = item_lines[0].ordered_at
            else:
                continue
            results.append(self._new_dish_summary(item, launched_at, item_lines, now))

        results.sort(key=lambda d: (d.days_since_launch, d.name))
        return results

    def _new_dish_summary(self, item: MenuItem, launched_at: datetime, lines: List, now: datetime) -> NewDishPerformance:
        days = max(0, (now - launched_at).days)
        units = int(sum(line.quantity for line in lines))
        revenue = sum(float(line.unit_price) * line.quantity for line in lines)
        cost = float(item.cost_price)
        profit = revenue - cost * units

        # No customer identity in POS data: each order line stands in for one customer
        repeat_rate = (units / len(lines) - 1) * 100 if lines else 0.0
        per_day = units / days if days > 0 else 0.0
        target = cost * BREAK_EVEN_COST_MULTIPLE
        break_even_days = math.ceil(target / (profit / days)) if profit > 0 and days > 0 else None

        return NewDishPerformance(
            menu_item_id=item.id,
            name=item.name,
            launched_at=launched_at,
            days_since_launch=days,
            total_orders=units,
            order_lines=len(lines),
            repeat_rate=round(repeat_rate, 2),
            avg_orders_per_day=round(per_day, 2),
            revenue=round(revenue, 2),
            profit=round(profit, 2),
            break_even_target=round(target, 2),
            break_even_days=break_even_days,
            break_even_status=break_even_status(days, profit, target),
            early_failure_signals=early_failure_signals(days, units, repeat_rate, per_day, profit, target),
        )

    def revenue_by_day(
        self,
        restaurant_id: UUID,
        window_days: Optional[int] = None,
        as_of: Optional[datetime] = None
    ) -> List[DailyRevenue]:
        """Order count and order-total revenue per business date, oldest first. Days without orders are absent."""
        start, end = self._window(window_days, as_of)

        with store_guard(self.db, "revenue_by_day"):
            restaurant = self.sales.get_restaurant(restaurant_id)
            if restaurant is None:
                raise NotFound(f"Restaurant {restaurant_id} not found")
            orders = self.sales.completed_orders(restaurant_id, start, end)

        if not orders:
            return []

        df = pd.DataFrame([
            {
                'date': get_business_date(o.ordered_at, restaurant.timezone),
                'revenue': float(o.total_amount),
            }
            for o in orders
        ])
        daily = df.groupby('date', sort=True).agg(orders=('revenue', 'count'), revenue=('revenue', 'sum'))

        return [
            DailyRevenue(business_date=r.Index, orders=int(r.orders), revenue=round(float(r.revenue), 2))
            for r in daily.itertuples()
        ]
