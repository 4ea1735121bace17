"""
Time rollups and audit of scheduled recomputes.
"""
import uuid
from sqlalchemy import Column, String, Text, Date, DateTime, Float, Integer, ForeignKey, Uuid, JSON, UniqueConstraint
from sqlalchemy.orm import relationship

from marginlens.core.business_day import utc_now
from marginlens.db.base import Base


class TimeAggregate(Base):
    """Versioned revenue rollup for a business day, week or month."""
    __tablename__ = "time_aggregates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    period_type = Column(String(10), nullable=False)  # day, week, month
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    total_revenue = Column(Float, nullable=False)
    total_orders = Column(Integer, nullable=False)
    avg_order_value = Column(Float, nullable=False)
    total_items = Column(Integer, nullable=False, default=0)
    unique_items = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    computed_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('restaurant_id', 'period_type', 'period_start', 'version',
                         name='uq_time_aggregates_period_version'),
    )


class AlgorithmRun(Base):
    """Audit log for algorithm executions."""
    __tablename__ = "algorithm_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    algorithm_name = Column(String(100), nullable=False)  # recompute_all
    run_started_at = Column(DateTime, default=utc_now)
    run_completed_at = Column(DateTime)
    status = Column(String(20), default="running")  # running, completed, failed
    input_params = Column(JSON)
    output_summary = Column(JSON)
    error_message = Column(Text)

    restaurant = relationship("Restaurant")
