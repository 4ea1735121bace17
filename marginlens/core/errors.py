"""
Error taxonomy for the analytics engines.

Recoverable states (not enough history, evaluation too early) are returned as
plain result objects so callers can branch on them without try/except.
Everything that means "the request was wrong" or "the store failed" is raised.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsufficientData:
    """Not enough samples to produce a statistic. Nothing was written."""
    reason: str
    required: Optional[int] = None
    available: Optional[int] = None


@dataclass(frozen=True)
class NotYetEvaluable:
    """Outcome evaluation preconditions are not met yet. Try again later."""
    reason: str
    evaluable_after: Optional[datetime] = None


class AnalyticsError(Exception):
    """Base class for errors raised by the engines."""


class NotFound(AnalyticsError):
    """A referenced restaurant, menu item or decision does not exist."""


class InvalidTransition(AnalyticsError):
    """A decision or order status change that the state machine forbids."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move from '{current}' to '{requested}'")


class ComputationFailure(AnalyticsError):
    """The transaction store failed while an operation was running."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        super().__init__(f"{operation} failed: data store error")
        self.__cause__ = cause


@contextmanager
def store_guard(db: Session, operation: str) -> Iterator[None]:
    """
    Wrap data access for one engine operation.

    On a store error the session is rolled back so no half-written versioned
    record survives, the failure is logged with traceback, and a
    ComputationFailure is raised in its place.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"{operation} failed: {exc}", exc_info=True)
        raise ComputationFailure(operation, exc) from exc
