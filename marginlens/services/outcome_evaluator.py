"""
Outcome evaluation for implemented decisions.

Once a decision has been implemented for at least MATURATION_DAYS, revenue
for its entity (the item for item decisions, otherwise the whole restaurant)
is compared across:

    before: [implemented_at - 14 days, implemented_at)
    after:  [implemented_at, now - 7 days)

and the measured percent change is scored against the prediction:

    accuracy = 1.0                                       if predicted == actual == 0
             = max(0, 1 - |p - a| / max(|p|, |a|))       otherwise

The evaluation text is descriptive only; no model is retrained from it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from marginlens.core.business_day import utc_now
from marginlens.core.errors import NotYetEvaluable, store_guard
from marginlens.models.decision import Decision, DecisionOutcome, DecisionStatus
from marginlens.schemas.decision import PredictedImpact, RevenueImpact
from marginlens.services import statistics as stats
from marginlens.services.decision_tracker import DecisionTracker
from marginlens.services.sales import SalesQueryService

logger = logging.getLogger(__name__)

HIGHLY_ACCURATE = 0.8
MODERATELY_ACCURATE = 0.5


@dataclass
class EvaluationResult:
    decision_id: UUID
    predicted: PredictedImpact
    actual: RevenueImpact
    accuracy: float
    evaluation: str


def score_accuracy(predicted_pct: float, actual_pct: float) -> float:
    """Relative-error accuracy in [0, 1]."""
    if predicted_pct == 0 and actual_pct == 0:
        return 1.0
    error = abs(predicted_pct - actual_pct) / max(abs(predicted_pct), abs(actual_pct))
    return max(0.0, 1 - error)


def evaluation_text(predicted_pct: float, actual_pct: float, accuracy: float) -> str:
    """Tiered summary; a score of exactly 0.8 counts as highly accurate."""
    detail = f"Expected {predicted_pct:.1f}% change, actual was {actual_pct:.1f}%."
    if accuracy >= HIGHLY_ACCURATE:
        return f"Prediction was highly accurate. {detail}"
    if accuracy >= MODERATELY_ACCURATE:
        return f"Prediction was moderately accurate. {detail}"
    return f"Prediction was off. {detail} Adjusting models."


class OutcomeEvaluator:
    """Measures actual impact of implemented decisions and records accuracy."""

    MATURATION_DAYS = 7
    BEFORE_WINDOW_DAYS = 14

    def __init__(self, db: Session):
        self.db = db
        self.tracker = DecisionTracker(db)
        self.sales = SalesQueryService(db)

    def evaluate_decision(
        self,
        decision_id: UUID,
        as_of: Optional[datetime] = None
    ) -> Union[EvaluationResult, NotYetEvaluable]:
        """
        Evaluate one decision, writing its outcome on first success.

        A decision that already has an outcome returns the stored result.
        Returns NotYetEvaluable (nothing written) when the decision is not
        implemented or has not matured.
        """
        now = as_of or utc_now()
        decision = self.tracker.get_decision(decision_id)
        predicted = PredictedImpact.model_validate(decision.predicted_impact)

        existing = self.tracker.get_outcome(decision_id)
        if existing is not None:
            return self._result(decision, predicted, existing)

        if decision.status != DecisionStatus.IMPLEMENTED.value or decision.implemented_at is None:
            return NotYetEvaluable(reason=f"Decision is {decision.status}, not implemented")

        implemented_at = decision.implemented_at
        evaluable_after = implemented_at + timedelta(days=self.MATURATION_DAYS)
        after_end = now - timedelta(days=self.MATURATION_DAYS)
        if now < evaluable_after or after_end <= implemented_at:
            return NotYetEvaluable(
                reason=f"Needs {self.MATURATION_DAYS} days of post-implementation history",
                evaluable_after=evaluable_after,
            )

        actual = self.measure_impact(decision, implemented_at, after_end)
        accuracy = score_accuracy(predicted.revenue_change_pct, actual.revenue_change_pct)
        text = evaluation_text(predicted.revenue_change_pct, actual.revenue_change_pct, accuracy)

        outcome = self.tracker.log_outcome(
            decision_id, actual, accuracy, notes=text, evaluation_date=now
        )
        logger.info(f"Evaluated decision {decision_id}: accuracy {outcome.accuracy_score:.2f}")
        return self._result(decision, predicted, outcome)

    def measure_impact(self, decision: Decision, implemented_at: datetime, after_end: datetime) -> RevenueImpact:
        """Revenue before vs after implementation for the decision's entity."""
        before_start = implemented_at - timedelta(days=self.BEFORE_WINDOW_DAYS)
        item_id = decision.entity_id if decision.entity_type == "item" else None

        with store_guard(self.db, "measure_impact"):
            before = self.sales.revenue(decision.restaurant_id, before_start, implemented_at, item_id)
            after = self.sales.revenue(decision.restaurant_id, implemented_at, after_end, item_id)

        return RevenueImpact(
            revenue_change_pct=stats.percent_change(before, after),
            before_value=before,
            after_value=after,
        )

    def evaluate_due_decisions(
        self,
        restaurant_id: UUID,
        as_of: Optional[datetime] = None
    ) -> List[EvaluationResult]:
        """Evaluate every implemented decision that matured and has no outcome yet."""
        results = []
        for decision in self.tracker.get_implemented_unevaluated(restaurant_id):
            result = self.evaluate_decision(decision.id, as_of)
            if isinstance(result, EvaluationResult):
                results.append(result)
        return results

    @staticmethod
    def _result(decision: Decision, predicted: PredictedImpact, outcome: DecisionOutcome) -> EvaluationResult:
        actual = RevenueImpact.model_validate(outcome.actual_impact)
        return EvaluationResult(
            decision_id=decision.id,
            predicted=predicted,
            actual=actual,
            accuracy=outcome.accuracy_score,
            evaluation=outcome.notes or evaluation_text(
                predicted.revenue_change_pct, actual.revenue_change_pct, outcome.accuracy_score
            ),
        )
