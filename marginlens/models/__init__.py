"""
SQLAlchemy models for MarginLens.
"""
# Transaction store
from marginlens.models.restaurant import Restaurant
from marginlens.models.menu import MenuItem, Server
from marginlens.models.order import Order, OrderItem, OrderStatus, Channel

# Analytics records
from marginlens.models.baseline import ItemBaseline
from marginlens.models.decision import Decision, DecisionOutcome, DecisionStatus, DecisionAction
from marginlens.models.insight import Insight

# Rollups & Audit
from marginlens.models.aggregate import TimeAggregate, AlgorithmRun


__all__ = [
    # Store
    "Restaurant",
    "MenuItem",
    "Server",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Channel",
    # Analytics
    "ItemBaseline",
    "Decision",
    "DecisionOutcome",
    "DecisionStatus",
    "DecisionAction",
    "Insight",
    # Rollups
    "TimeAggregate",
    "AlgorithmRun",
]
