"""
Versioned per-item statistical baselines.
"""
import uuid
from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, Uuid, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from marginlens.core.business_day import utc_now
from marginlens.db.base import Base


class ItemBaseline(Base):
    """
    Point-in-time "normal" for one menu item's daily sales.

    Rows are append-only: each recompute writes version N+1 for the item so
    past decisions can be re-read against the baseline that was current when
    they were made.
    """
    __tablename__ = "item_baselines"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False)
    version = Column(Integer, nullable=False)

    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)

    avg_daily_quantity = Column(Float, nullable=False)
    std_dev_quantity = Column(Float, nullable=False)
    avg_daily_revenue = Column(Float, nullable=False)
    std_dev_revenue = Column(Float, nullable=False)
    price_elasticity = Column(Float, nullable=True)  # NULL when no qualifying price change
    seasonality_index = Column(Float, nullable=True)  # Reserved, no estimator yet

    sample_size = Column(Integer, nullable=False)  # Distinct sales days
    confidence_score = Column(Float, nullable=False)  # 0-1
    computed_at = Column(DateTime, default=utc_now, nullable=False)

    menu_item = relationship("MenuItem", back_populates="baselines")

    __table_args__ = (
        UniqueConstraint('menu_item_id', 'version', name='uq_item_baselines_item_version'),
        Index('idx_item_baselines_item_version', 'menu_item_id', 'version'),
    )
