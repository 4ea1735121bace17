"""
Baselines router: recompute and compare per-item statistical baselines.
"""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marginlens.core.deps import get_restaurant, get_restaurant_menu_item
from marginlens.core.errors import InsufficientData
from marginlens.db.session import get_db
from marginlens.models.restaurant import Restaurant
from marginlens.schemas.insight import (
    BaselineComparisonResponse,
    BaselineRecomputeRequest,
    BaselineResponse,
    BaselineResult,
)
from marginlens.services.baseline import BaselineService

router = APIRouter(prefix="/restaurants/{restaurant_id}/baselines", tags=["baselines"])


@router.post("/{menu_item_id}", response_model=BaselineResult)
def recompute_baseline(
    menu_item_id: UUID,
    request: BaselineRecomputeRequest = BaselineRecomputeRequest(),
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """
    Compute a new baseline version for a menu item.

    Items with fewer than 7 days of sales return status "insufficient_data"
    and no baseline is written.
    """
    get_restaurant_menu_item(db, restaurant, menu_item_id)
    result = BaselineService(db).compute_item_baseline(menu_item_id, request.lookback_days)

    if isinstance(result, InsufficientData):
        return BaselineResult(
            status="insufficient_data",
            reason=result.reason,
            required=result.required,
            available=result.available,
        )
    return BaselineResult(status="computed", baseline=BaselineResponse.model_validate(result))


@router.get("/{menu_item_id}/comparison", response_model=BaselineComparisonResponse)
def compare_to_baseline(
    menu_item_id: UUID,
    current_value: float = Query(..., ge=0, description="Current daily quantity"),
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Deviation of a daily quantity from the item's latest baseline."""
    get_restaurant_menu_item(db, restaurant, menu_item_id)
    comparison = BaselineService(db).get_baseline_comparison(menu_item_id, current_value)

    if comparison is None:
        return BaselineComparisonResponse(status="insufficient_data", current_value=current_value)
    return BaselineComparisonResponse(
        status="compared",
        baseline_avg=comparison.baseline_avg,
        current_value=comparison.current_value,
        deviation_sigma=comparison.deviation_sigma,
        performance=comparison.performance,
        baseline_version=comparison.baseline_version,
    )
