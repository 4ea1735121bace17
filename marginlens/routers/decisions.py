"""
Decisions router: generate, record and track recommendations.

Invalid status transitions surface as 409 via the application's
InvalidTransition handler.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from marginlens.core.deps import get_restaurant
from marginlens.core.errors import NotYetEvaluable
from marginlens.db.session import get_db
from marginlens.models.decision import Decision
from marginlens.models.restaurant import Restaurant
from marginlens.schemas.decision import (
    AccuracySummaryResponse,
    DecisionCreate,
    DecisionExplanation,
    DecisionRecorded,
    DecisionResponse,
    DecisionStatusUpdate,
    EvaluationResponse,
    GeneratedDecisionsResponse,
)
from marginlens.services.decision_engine import DecisionEngine
from marginlens.services.decision_tracker import DecisionTracker
from marginlens.services.outcome_evaluator import OutcomeEvaluator

router = APIRouter(prefix="/restaurants/{restaurant_id}/decisions", tags=["decisions"])


def get_restaurant_decision(db: Session, restaurant: Restaurant, decision_id: UUID) -> Decision:
    decision = DecisionTracker(db).get_decision(decision_id)
    if decision.restaurant_id != restaurant.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Decision not found"
        )
    return decision


@router.get("/generate", response_model=GeneratedDecisionsResponse)
def generate_decisions(
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Current recommendations, highest priority first. Nothing is stored."""
    decisions = DecisionEngine(db).generate_decisions(restaurant.id)
    return GeneratedDecisionsResponse(decisions=decisions, total=len(decisions))


@router.post("", response_model=DecisionRecorded, status_code=status.HTTP_201_CREATED)
def record_decision(
    decision: DecisionCreate,
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Store a recommendation as pending."""
    decision_id = DecisionTracker(db).record_decision(restaurant.id, decision)
    return DecisionRecorded(id=decision_id)


@router.get("/pending", response_model=List[DecisionResponse])
def list_pending_decisions(
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    decisions = DecisionTracker(db).get_pending_decisions(restaurant.id)
    return [DecisionResponse.model_validate(d) for d in decisions]


@router.get("/accuracy", response_model=AccuracySummaryResponse)
def get_accuracy_summary(
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Mean prediction accuracy per decision action."""
    return DecisionTracker(db).get_accuracy_summary(restaurant.id)


@router.get("/{decision_id}", response_model=DecisionResponse)
def get_decision(
    decision_id: UUID,
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    return DecisionResponse.model_validate(get_restaurant_decision(db, restaurant, decision_id))


@router.patch("/{decision_id}/status", response_model=DecisionResponse)
def update_decision_status(
    decision_id: UUID,
    update: DecisionStatusUpdate,
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Move a decision through its lifecycle."""
    get_restaurant_decision(db, restaurant, decision_id)
    decision = DecisionTracker(db).update_decision_status(decision_id, update.status)
    return DecisionResponse.model_validate(decision)


@router.post("/{decision_id}/evaluate", response_model=EvaluationResponse)
def evaluate_decision(
    decision_id: UUID,
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Measure the outcome of an implemented decision once it has matured."""
    get_restaurant_decision(db, restaurant, decision_id)
    result = OutcomeEvaluator(db).evaluate_decision(decision_id)

    if isinstance(result, NotYetEvaluable):
        return EvaluationResponse(
            status="not_yet_evaluable",
            decision_id=decision_id,
            reason=result.reason,
            evaluable_after=result.evaluable_after,
        )
    return EvaluationResponse(
        status="evaluated",
        decision_id=decision_id,
        predicted=result.predicted,
        actual=result.actual,
        accuracy_score=result.accuracy,
        evaluation=result.evaluation,
    )


@router.get("/{decision_id}/explanation", response_model=DecisionExplanation)
def explain_decision(
    decision_id: UUID,
    restaurant: Restaurant = Depends(get_restaurant),
    db: Session = Depends(get_db),
):
    """Plain-language explanation of a decision with next steps."""
    decision = get_restaurant_decision(db, restaurant, decision_id)
    return DecisionEngine(db).explain_decision(decision)
