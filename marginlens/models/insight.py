"""
Insight audit trail: why did revenue (or an item) move.
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Float, Integer, ForeignKey, Uuid, JSON, Index
from sqlalchemy.orm import relationship

from marginlens.core.business_day import utc_now
from marginlens.db.base import Base


class Insight(Base):
    """
    An explained observation. Append-only.

    causal_factors: [{factor, contribution, contribution_pct, direction}]
    metrics: {current_value, previous_value, absolute_change, percent_change}
    """
    __tablename__ = "insights"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=True)
    insight_type = Column(String(50), nullable=False)  # revenue_decomposition, item_performance
    severity = Column(String(20), nullable=False)  # info, warning, critical
    observation = Column(Text, nullable=False)
    explanation = Column(Text, nullable=False)
    causal_factors = Column(JSON, nullable=False, default=list)
    formula = Column(Text, nullable=True)
    assumptions = Column(JSON, nullable=False, default=list)
    metrics = Column(JSON, nullable=True)
    sample_size = Column(Integer, nullable=False)
    confidence_score = Column(Float, nullable=False)
    recommendation = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    restaurant = relationship("Restaurant")

    __table_args__ = (
        Index('idx_insights_restaurant_expires', 'restaurant_id', 'expires_at'),
    )
