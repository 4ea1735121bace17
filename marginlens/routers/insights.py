"""
Insights router: revenue decomposition, item performance and the active feed.
"""
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marginlens.core.deps import get_restaurant, get_restaurant_menu_item
from marginlens.core.errors import InsufficientData
from marginlens.db.session import get_db
from marginlens.models.insight import Insight
from marginlens.models.restaurant import Restaurant
from marginlens.schemas.insight import (
    InsightListResponse,
    InsightResponse,
    ItemAnalysisResponse,
    RevenueAnalysisRequest,
    RevenueAnalysisResponse,
    RevenueDecompositionSchema,
)
from marginlens.services.insights import InsightService

router = APIRouter(prefix="/restaurants/{restaurant_id}/insights", tags=["insights"])


@router.post("/revenue", response_model=RevenueAnalysisResponse)
def analyze_revenue(
    request: RevenueAnalysisRequest = RevenueAnalysisRequest(),
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Explain the revenue change against the preceding period."""
    result = InsightService(db).analyze_revenue_change(
        restaurant.id, request.current_period_days, request.comparison_period_days
    )
    if isinstance(result, InsufficientData):
        return RevenueAnalysisResponse(status="insufficient_data", reason=result.reason)

    d = result.decomposition
    return RevenueAnalysisResponse(
        status="analyzed",
        insight=InsightResponse.model_validate(db.get(Insight, result.insight_id)),
        decomposition=RevenueDecompositionSchema(
            current_revenue=float(d.current_revenue),
            comparison_revenue=float(d.comparison_revenue),
            total_change=float(d.total_change),
            percent_change=d.percent_change,
            volume_effect=float(d.volume_effect),
            price_effect=float(d.price_effect),
            mix_effect=float(d.mix_effect),
        ),
    )


@router.post("/items/{menu_item_id}", response_model=ItemAnalysisResponse)
def analyze_item(
    menu_item_id: UUID,
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Score the item's last week against its baseline."""
    get_restaurant_menu_item(db, restaurant, menu_item_id)
    result = InsightService(db).analyze_item_performance(menu_item_id)
    if isinstance(result, InsufficientData):
        return ItemAnalysisResponse(status="insufficient_data", reason=result.reason)
    return ItemAnalysisResponse(status="analyzed", insight=InsightResponse.model_validate(result))


@router.get("", response_model=InsightListResponse)
def list_active_insights(
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Insights that have not expired yet, newest first."""
    insights = InsightService(db).get_active_insights(restaurant.id)
    return InsightListResponse(
        insights=[InsightResponse.model_validate(i) for i in insights],
        total=len(insights),
    )
