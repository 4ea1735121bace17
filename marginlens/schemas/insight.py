"""
Baseline and insight Pydantic schemas.

Operations that can lack history answer with `status` set to
"insufficient_data" and the payload left empty, rather than an error code.
"""
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BaselineResponse(BaseModel):
    id: UUID
    menu_item_id: UUID
    version: int
    period_start: datetime
    period_end: datetime
    avg_daily_quantity: float
    std_dev_quantity: float
    avg_daily_revenue: float
    std_dev_revenue: float
    price_elasticity: Optional[float] = None
    seasonality_index: Optional[float] = None
    sample_size: int
    confidence_score: float
    computed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BaselineRecomputeRequest(BaseModel):
    lookback_days: int = Field(30, ge=1, le=365)


class BaselineResult(BaseModel):
    status: str  # computed, insufficient_data
    baseline: Optional[BaselineResponse] = None
    reason: Optional[str] = None
    required: Optional[int] = None
    available: Optional[int] = None


class BaselineComparisonResponse(BaseModel):
    status: str  # compared, insufficient_data
    baseline_avg: Optional[float] = None
    current_value: float
    deviation_sigma: Optional[float] = None
    performance: Optional[str] = None  # above, below, normal
    baseline_version: Optional[int] = None


class CausalFactorSchema(BaseModel):
    factor: str
    contribution: float
    contribution_pct: float
    direction: str


class InsightResponse(BaseModel):
    id: UUID
    restaurant_id: UUID
    menu_item_id: Optional[UUID] = None
    insight_type: str
    severity: str
    observation: str
    explanation: str
    causal_factors: List[CausalFactorSchema] = []
    formula: Optional[str] = None
    assumptions: List[str] = []
    metrics: Optional[Dict[str, float]] = None
    sample_size: int
    confidence_score: float
    recommendation: Optional[str] = None
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RevenueAnalysisRequest(BaseModel):
    current_period_days: int = Field(7, ge=1, le=365)
    comparison_period_days: Optional[int] = Field(None, ge=1, le=365)


class RevenueDecompositionSchema(BaseModel):
    current_revenue: float
    comparison_revenue: float
    total_change: float
    percent_change: float
    volume_effect: float
    price_effect: float
    mix_effect: float


class RevenueAnalysisResponse(BaseModel):
    status: str  # analyzed, insufficient_data
    insight: Optional[InsightResponse] = None
    decomposition: Optional[RevenueDecompositionSchema] = None
    reason: Optional[str] = None


class ItemAnalysisResponse(BaseModel):
    status: str  # analyzed, insufficient_data
    insight: Optional[InsightResponse] = None
    reason: Optional[str] = None


class InsightListResponse(BaseModel):
    insights: List[InsightResponse]
    total: int
