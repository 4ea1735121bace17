"""
Decision and DecisionOutcome models.
"""
import uuid
from enum import Enum
from sqlalchemy import Column, String, Text, DateTime, Float, ForeignKey, Uuid, JSON, Index
from sqlalchemy.orm import relationship

from marginlens.core.business_day import utc_now
from marginlens.db.base import Base


class DecisionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"
    DISMISSED = "dismissed"


class DecisionAction(str, Enum):
    PROMOTE = "Promote"
    REPRICE = "Reprice"
    REMOVE = "Remove"
    OPTIMIZE = "Optimize"


class Decision(Base):
    """
    A recommendation the owner can act on.

    `predicted_impact` is written once at creation and never updated; only
    `status` and `implemented_at` change afterwards.
    """
    __tablename__ = "decisions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(20), nullable=False)
    category = Column(String(20), nullable=False)  # Menu, Channel, Operations
    entity_type = Column(String(20), nullable=False)  # item, channel, restaurant
    entity_id = Column(Uuid, nullable=True)  # menu item id when entity_type == item
    target = Column(String(255), nullable=False)  # item name, channel mix, operational area
    priority = Column(String(10), nullable=False)  # high, medium, low
    predicted_impact = Column(JSON, nullable=False)
    rationale = Column(Text, nullable=False)
    recommendation = Column(Text, nullable=True)
    risks = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default=DecisionStatus.PENDING.value)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
    implemented_at = Column(DateTime, nullable=True)

    outcome = relationship("DecisionOutcome", back_populates="decision", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_decisions_restaurant_status', 'restaurant_id', 'status'),
    )


class DecisionOutcome(Base):
    """Measured result of an implemented decision. One row per decision."""
    __tablename__ = "decision_outcomes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    decision_id = Column(Uuid, ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False, unique=True)
    actual_impact = Column(JSON, nullable=False)
    evaluation_date = Column(DateTime, default=utc_now, nullable=False)
    accuracy_score = Column(Float, nullable=False)  # 0-1
    notes = Column(Text, nullable=True)

    decision = relationship("Decision", back_populates="outcome")
