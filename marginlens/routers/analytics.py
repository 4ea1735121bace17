"""
Analytics router: menu engineering, channel profitability, capacity, servers,
new-dish launches, daily revenue, price and scenario simulation and the
scheduled recompute trigger.
"""
from collections import Counter
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marginlens.core.deps import get_restaurant, get_restaurant_menu_item
from marginlens.db.session import get_db
from marginlens.models.restaurant import Restaurant
from marginlens.schemas.analytics import (
    CapacityResponse,
    ChannelPerformanceResponse,
    DailyRevenueResponse,
    MenuEngineeringResponse,
    MenuItemPerformanceResponse,
    NewDishResponse,
    PriceSimulationRequest,
    PriceSimulationResponse,
    RecomputeResponse,
    ScenarioRequest,
    ScenarioResponse,
    ServerPerformanceResponse,
)
from marginlens.services.aggregates import AggregateService
from marginlens.services.computation import ComputationService
from marginlens.services.simulation import SimulationService

router = APIRouter(prefix="/restaurants/{restaurant_id}", tags=["analytics"])


@router.get("/analytics/menu-engineering", response_model=MenuEngineeringResponse)
def get_menu_engineering(
    window_days: Optional[int] = Query(None, ge=1, le=365),
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Menu items classified into Stars, Plowhorses, Puzzles and Dogs."""
    items = AggregateService(db).menu_engineering(restaurant.id, window_days)
    return MenuEngineeringResponse(
        items=[MenuItemPerformanceResponse.model_validate(i) for i in items],
        quadrant_counts=dict(Counter(i.quadrant for i in items)),
    )


@router.get("/analytics/channels", response_model=List[ChannelPerformanceResponse])
def get_channel_metrics(
    window_days: Optional[int] = Query(None, ge=1, le=365),
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Net profitability per sales channel."""
    channels = AggregateService(db).channel_metrics(restaurant.id, window_days)
    return [ChannelPerformanceResponse.model_validate(c) for c in channels]


@router.get("/analytics/capacity", response_model=CapacityResponse)
def get_capacity(
    window_days: Optional[int] = Query(None, ge=1, le=365),
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Hourly load against seating, with peak and off-peak RevPASH."""
    return CapacityResponse.model_validate(AggregateService(db).capacity(restaurant.id, window_days))


@router.get("/analytics/servers", response_model=List[ServerPerformanceResponse])
def get_server_performance(
    window_days: Optional[int] = Query(None, ge=1, le=365),
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Sales and shift-normalized effectiveness per server."""
    servers = AggregateService(db).server_performance(restaurant.id, window_days)
    return [ServerPerformanceResponse.model_validate(s) for s in servers]


@router.get("/analytics/new-dishes", response_model=List[NewDishResponse])
def get_new_dishes(
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Adoption and break-even tracking for recently launched dishes."""
    dishes = AggregateService(db).new_dish_performance(restaurant.id)
    return [NewDishResponse.model_validate(d) for d in dishes]


@router.get("/analytics/revenue-by-day", response_model=List[DailyRevenueResponse])
def get_revenue_by_day(
    window_days: Optional[int] = Query(None, ge=1, le=365),
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Orders and revenue per business day."""
    days = AggregateService(db).revenue_by_day(restaurant.id, window_days)
    return [DailyRevenueResponse.model_validate(d) for d in days]


@router.post("/simulations/price", response_model=PriceSimulationResponse)
def simulate_price(
    request: PriceSimulationRequest,
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Project units, revenue and profit after a price change."""
    get_restaurant_menu_item(db, restaurant, request.menu_item_id)
    result = SimulationService(db).simulate_price_change(
        request.menu_item_id, request.price_change, request.override_elasticity
    )
    return PriceSimulationResponse.model_validate(result)


@router.post("/simulations/scenario", response_model=ScenarioResponse)
def simulate_scenario(
    request: ScenarioRequest,
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Project restaurant revenue, profit and orders for a combination of levers."""
    if request.menu_item_id is not None:
        get_restaurant_menu_item(db, restaurant, request.menu_item_id)
    result = SimulationService(db).run_scenario(
        restaurant.id,
        menu_item_id=request.menu_item_id,
        price_change=request.price_change,
        override_elasticity=request.override_elasticity,
        channel_mix=request.channel_mix,
        staffing_hours_change=request.staffing_hours_change,
        open_hour=request.open_hour,
        close_hour=request.close_hour,
    )
    return ScenarioResponse.model_validate(result)


@router.post("/recompute", response_model=RecomputeResponse)
def recompute(
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Run the scheduled recompute now (aggregates, baselines, checks, evaluations)."""
    return ComputationService(db).recompute_all(restaurant.id)
