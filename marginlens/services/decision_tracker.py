"""
Decision lifecycle store.

    pending -> accepted -> implemented
    pending -> implemented
    pending -> rejected
    pending | accepted -> dismissed

implemented, rejected and dismissed are terminal. Moving to implemented
stamps implemented_at, which starts the outcome maturation clock.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marginlens.core.business_day import utc_now
from marginlens.core.errors import InvalidTransition, NotFound, store_guard
from marginlens.models.decision import Decision, DecisionOutcome, DecisionStatus
from marginlens.schemas.decision import DecisionCreate, RevenueImpact

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[DecisionStatus, frozenset] = {
    DecisionStatus.PENDING: frozenset({
        DecisionStatus.ACCEPTED,
        DecisionStatus.REJECTED,
        DecisionStatus.IMPLEMENTED,
        DecisionStatus.DISMISSED,
    }),
    DecisionStatus.ACCEPTED: frozenset({
        DecisionStatus.IMPLEMENTED,
        DecisionStatus.DISMISSED,
    }),
    DecisionStatus.IMPLEMENTED: frozenset(),
    DecisionStatus.REJECTED: frozenset(),
    DecisionStatus.DISMISSED: frozenset(),
}


def can_transition(current: DecisionStatus, requested: DecisionStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


class DecisionTracker:
    """Persists decisions, their status changes and their measured outcomes."""

    def __init__(self, db: Session):
        self.db = db

    def record_decision(self, restaurant_id: UUID, decision: DecisionCreate) -> UUID:
        """Store a generated decision as pending and return its id."""
        with store_guard(self.db, "record_decision"):
            row = Decision(
                restaurant_id=restaurant_id,
                action=decision.action.value,
                category=decision.category,
                entity_type=decision.entity_type,
                entity_id=decision.entity_id,
                target=decision.target,
                priority=decision.priority,
                predicted_impact=decision.predicted_impact.model_dump(),
                rationale=decision.rationale,
                recommendation=decision.recommendation,
                risks=list(decision.risks),
                status=DecisionStatus.PENDING.value,
                created_at=utc_now(),
            )
            self.db.add(row)
            self.db.commit()

        logger.info(f"Recorded {row.action} decision {row.id} for {row.target}")
        return row.id

    def get_decision(self, decision_id: UUID) -> Decision:
        with store_guard(self.db, "get_decision"):
            decision = self.db.get(Decision, decision_id)
        if decision is None:
            raise NotFound(f"Decision {decision_id} not found")
        return decision

    def update_decision_status(
        self,
        decision_id: UUID,
        new_status: DecisionStatus,
        as_of: Optional[datetime] = None
    ) -> Decision:
        """
        Apply one lifecycle transition.

        The decision row is locked for the read-check-write so concurrent
        updates are applied one at a time. Only status, implemented_at and
        updated_at change; predicted_impact is never touched.

        Raises:
            NotFound: unknown decision
            InvalidTransition: the move is not allowed; nothing is written
        """
        new_status = DecisionStatus(new_status)

        with store_guard(self.db, "update_decision_status"):
            decision = self.db.execute(
                select(Decision).where(Decision.id == decision_id).with_for_update()
            ).scalar_one_or_none()
            if decision is None:
                raise NotFound(f"Decision {decision_id} not found")

            current = DecisionStatus(decision.status)
            if not can_transition(current, new_status):
                self.db.rollback()
                logger.warning(
                    f"Rejected transition {current.value} -> {new_status.value} for decision {decision_id}"
                )
                raise InvalidTransition(current.value, new_status.value)

            now = as_of or utc_now()
            decision.status = new_status.value
            decision.updated_at = now
            if new_status == DecisionStatus.IMPLEMENTED:
                decision.implemented_at = now

            self.db.commit()
            self.db.refresh(decision)

        logger.info(f"Decision {decision_id} moved {current.value} -> {new_status.value}")
        return decision

    def get_pending_decisions(self, restaurant_id: UUID) -> List[Decision]:
        """Pending decisions for a restaurant, newest first."""
        with store_guard(self.db, "get_pending_decisions"):
            stmt = (
                select(Decision)
                .where(
                    Decision.restaurant_id == restaurant_id,
                    Decision.status == DecisionStatus.PENDING.value,
                )
                .order_by(Decision.created_at.desc())
            )
            return list(self.db.execute(stmt).scalars().all())

    def get_implemented_unevaluated(self, restaurant_id: UUID) -> List[Decision]:
        with store_guard(self.db, "get_implemented_unevaluated"):
            stmt = (
                select(Decision)
                .outerjoin(DecisionOutcome, DecisionOutcome.decision_id == Decision.id)
                .where(
                    Decision.restaurant_id == restaurant_id,
                    Decision.status == DecisionStatus.IMPLEMENTED.value,
                    DecisionOutcome.id.is_(None),
                )
                .order_by(Decision.implemented_at)
            )
            return list(self.db.execute(stmt).scalars().all())

    def get_outcome(self, decision_id: UUID) -> Optional[DecisionOutcome]:
        with store_guard(self.db, "get_outcome"):
            return self.db.execute(
                select(DecisionOutcome).where(DecisionOutcome.decision_id == decision_id)
            ).scalar_one_or_none()

    def log_outcome(
        self,
        decision_id: UUID,
        actual_impact: RevenueImpact,
        accuracy_score: float,
        notes: Optional[str] = None,
        evaluation_date: Optional[datetime] = None
    ) -> DecisionOutcome:
        """
        Store the single outcome of an implemented decision.

        If another writer stored the outcome first, the existing row is
        returned instead of a second one.
        """
        with store_guard(self.db, "log_outcome"):
            decision = self.db.get(Decision, decision_id)
            if decision is None:
                raise NotFound(f"Decision {decision_id} not found")
            if decision.status != DecisionStatus.IMPLEMENTED.value:
                raise InvalidTransition(decision.status, "evaluated")

            outcome = DecisionOutcome(
                decision_id=decision_id,
                actual_impact=actual_impact.model_dump(),
                evaluation_date=evaluation_date or utc_now(),
                accuracy_score=accuracy_score,
                notes=notes,
            )
            self.db.add(outcome)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                existing = self.get_outcome(decision_id)
                if existing is None:
                    raise
                logger.info(f"Outcome for decision {decision_id} already recorded")
                return existing
            self.db.refresh(outcome)

        logger.info(f"Outcome logged for decision {decision_id}: accuracy {accuracy_score:.2f}")
        return outcome

    def get_accuracy_summary(self, restaurant_id: UUID) -> Dict:
        """
        Mean accuracy and evaluated count per decision action.

        Informational only; generated confidence values do not read it.
        """
        with store_guard(self.db, "get_accuracy_summary"):
            rows = self.db.execute(
                select(Decision.action, DecisionOutcome.accuracy_score)
                .join(DecisionOutcome, DecisionOutcome.decision_id == Decision.id)
                .where(Decision.restaurant_id == restaurant_id)
            ).all()

        by_action: Dict[str, List[float]] = {}
        for action, score in rows:
            by_action.setdefault(action, []).append(score)

        all_scores = [score for _, score in rows]
        return {
            "overall_accuracy": sum(all_scores) / len(all_scores) if all_scores else None,
            "total_evaluated": len(all_scores),
            "by_action": [
                {
                    "action": action,
                    "evaluated": len(scores),
                    "avg_accuracy": sum(scores) / len(scores),
                }
                for action, scores in sorted(by_action.items())
            ],
        }
