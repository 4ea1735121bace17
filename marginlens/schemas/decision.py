"""
Decision Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marginlens.models.decision import DecisionAction, DecisionStatus


class RevenueImpact(BaseModel):
    """Revenue before and after a decision, over its entity (item or restaurant)."""
    revenue_change_pct: float
    before_value: float
    after_value: float


class PredictedImpact(RevenueImpact):
    """Expected money impact range plus the revenue projection it implies."""
    min: float
    max: float
    confidence: int = Field(ge=0, le=100)

    @model_validator(mode="after")
    def check_range(self) -> "PredictedImpact":
        if self.min > self.max:
            raise ValueError("impact min must not exceed max")
        return self


class DecisionCreate(BaseModel):
    """A recommendation ready to be recorded."""
    action: DecisionAction
    category: str  # Menu, Channel, Operations
    entity_type: str = "restaurant"  # item, channel, restaurant
    entity_id: Optional[UUID] = None
    target: str
    priority: str = Field(pattern="^(high|medium|low)$")
    predicted_impact: PredictedImpact
    rationale: str
    recommendation: Optional[str] = None
    risks: List[str] = []


class DecisionResponse(BaseModel):
    """Response model for a stored decision."""
    id: UUID
    restaurant_id: UUID
    action: DecisionAction
    category: str
    entity_type: str
    entity_id: Optional[UUID] = None
    target: str
    priority: str
    predicted_impact: PredictedImpact
    rationale: str
    recommendation: Optional[str] = None
    risks: List[str]
    status: DecisionStatus
    created_at: datetime
    implemented_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GeneratedDecisionsResponse(BaseModel):
    decisions: List[DecisionCreate]
    total: int


class DecisionStatusUpdate(BaseModel):
    """Request model for moving a decision through its lifecycle."""
    status: DecisionStatus


class DecisionRecorded(BaseModel):
    id: UUID


class EvaluationResponse(BaseModel):
    """Outcome of an implemented decision, or why it cannot be evaluated yet."""
    status: str  # evaluated, not_yet_evaluable
    decision_id: UUID
    predicted: Optional[PredictedImpact] = None
    actual: Optional[RevenueImpact] = None
    accuracy_score: Optional[float] = None
    evaluation: Optional[str] = None
    reason: Optional[str] = None
    evaluable_after: Optional[datetime] = None


class DecisionExplanation(BaseModel):
    decision_id: UUID
    summary: str
    reasoning: str
    expected_outcome: str
    risks: List[str]
    next_steps: List[str]


class ActionAccuracy(BaseModel):
    action: str
    evaluated: int
    avg_accuracy: float


class AccuracySummaryResponse(BaseModel):
    overall_accuracy: Optional[float] = None
    total_evaluated: int
    by_action: List[ActionAccuracy]
