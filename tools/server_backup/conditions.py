"""Schedule conditions deciding whether an output is written today."""

from datetime import date
from enum import Enum
from typing import Any, Optional

from shared.logger import get_logger

from .config import Condition

logger = get_logger(__name__)


class Schedule(str, Enum):
    """Recognized schedule tags."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ConditionResolver:
    """
    Evaluate output conditions against a fixed date.

    Attributes:
        today: Date the run is evaluated for
        context: Object passed to predicate conditions (the server orchestrator)
    """

    def __init__(self, today: Optional[date] = None, context: Any = None):
        self.today = today or date.today()
        self.context = context

    def resolve(self, condition: Condition, today: Optional[date] = None) -> bool:
        """
        Decide whether a condition holds.

        Args:
            condition: Schedule tag or predicate
            today: Date to evaluate (defaults to the resolver's date)

        Returns:
            True if the condition applies; unknown tags never apply
        """
        if callable(condition):
            return bool(condition(self.context))

        current = today or self.today
        if condition == Schedule.DAILY.value:
            return True
        if condition == Schedule.WEEKLY.value:
            return current.isoweekday() == 1
        if condition == Schedule.MONTHLY.value:
            return current.day == 1

        logger.debug(f"Unknown condition {condition!r}, treating as not applicable")
        return False

    def applies(self, condition: Optional[Condition]) -> bool:
        """An output without a condition always applies."""
        if not condition:
            return True
        return self.resolve(condition)
