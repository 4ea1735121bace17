"""
Analytics report and simulation Pydantic schemas.
"""
from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marginlens.models.order import Channel


class MenuItemPerformanceResponse(BaseModel):
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
    quadrant: str  # Stars, Plowhorses, Puzzles, Dogs

    model_config = ConfigDict(from_attributes=True)


class MenuEngineeringResponse(BaseModel):
    items: List[MenuItemPerformanceResponse]
    quadrant_counts: Dict[str, int]


class ChannelPerformanceResponse(BaseModel):
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

    model_config = ConfigDict(from_attributes=True)


class HourSlotResponse(BaseModel):
    hour: int
    orders: int
    revenue: float
    capacity: int
    utilization_percent: float
    rev_pash: float

    model_config = ConfigDict(from_attributes=True)


class CapacityResponse(BaseModel):
    seats: int
    time_slots: List[HourSlotResponse]
    peak_rev_pash: Optional[float] = None
    off_peak_rev_pash: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class PriceSimulationRequest(BaseModel):
    menu_item_id: UUID
    price_change: float = Field(..., gt=-1, le=5, description="Fractional change, 0.10 = +10%")
    override_elasticity: Optional[float] = Field(None, ge=0)


class PriceSimulationResponse(BaseModel):
    menu_item_id: UUID
    current_price: float
    new_price: float
    elasticity: float
    elasticity_source: str
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
    risks: List[str]

    model_config = ConfigDict(from_attributes=True)


class ServerPerformanceResponse(BaseModel):
    server_id: UUID
    name: str
    is_active: bool
    total_orders: int
    total_revenue: float
    avg_check_size: float
    upsell_rate: float
    avg_service_time: float  # minutes, estimated from units per order
    shifts_worked: int
    hours_worked: int
    avg_shift_difficulty: float
    fatigue_adjustment: float
    effectiveness_score: int

    model_config = ConfigDict(from_attributes=True)


class NewDishResponse(BaseModel):
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
    break_even_days: Optional[int] = None
    break_even_status: str  # achieved, on-track, at-risk, failed
    early_failure_signals: List[str]

    model_config = ConfigDict(from_attributes=True)


class DailyRevenueResponse(BaseModel):
    business_date: date
    orders: int
    revenue: float

    model_config = ConfigDict(from_attributes=True)


class ScenarioRequest(BaseModel):
    """Levers to combine; leave a lever out to keep it unchanged."""
    menu_item_id: Optional[UUID] = None
    price_change: Optional[float] = Field(None, gt=-1, le=5, description="Fractional change, 0.10 = +10%")
    override_elasticity: Optional[float] = Field(None, ge=0)
    channel_mix: Optional[Dict[Channel, float]] = Field(None, description="Target revenue share in percent per channel")
    staffing_hours_change: Optional[float] = Field(None, ge=-100, le=200, description="Percent change in staffed hours")
    open_hour: Optional[int] = Field(None, ge=0, le=23)
    close_hour: Optional[int] = Field(None, ge=1, le=24)

    @model_validator(mode="after")
    def check_levers(self) -> "ScenarioRequest":
        if self.price_change is not None and self.menu_item_id is None:
            raise ValueError("price_change needs menu_item_id")
        if self.channel_mix and any(share < 0 for share in self.channel_mix.values()):
            raise ValueError("channel shares must not be negative")
        open_hour = 11 if self.open_hour is None else self.open_hour
        close_hour = 23 if self.close_hour is None else self.close_hour
        if close_hour <= open_hour:
            raise ValueError("close_hour must be after open_hour")
        return self


class ScenarioResponse(BaseModel):
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
    risks: List[str]

    model_config = ConfigDict(from_attributes=True)


class RecomputeResponse(BaseModel):
    business_date: date
    aggregates: Dict[str, Optional[int]]
    baselines_computed: int
    baselines_skipped: int
    items_checked: int
    decisions_evaluated: int
