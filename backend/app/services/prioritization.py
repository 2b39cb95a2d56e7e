"""
Eisenhower Matrix prioritization.
Urgency is derived from how much of the remaining working time a task needs;
importance is set by the user (or inferred from an email subject).
"""

import math
from datetime import date, datetime, time, timezone
from typing import Dict, Iterable, List, Optional, Union

from app.models.task import MatrixTask, Quadrant, Task

DEFAULT_URGENCY = 5
DEFAULT_HOURS_PER_DAY = 8.0

# Importance and urgency at or above this are "important" / "urgent"
QUADRANT_THRESHOLD = 6

SECONDS_PER_DAY = 24 * 60 * 60


def _due_datetime(due_date: Union[date, datetime, str]) -> datetime:
    """A bare date is due at midnight UTC at the start of that day."""
    if isinstance(due_date, str):
        due_date = datetime.fromisoformat(due_date) if "T" in due_date else date.fromisoformat(due_date)
    if isinstance(due_date, datetime):
        return due_date if due_date.tzinfo else due_date.replace(tzinfo=timezone.utc)
    return datetime.combine(due_date, time.min, tzinfo=timezone.utc)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_urgency(
    due_date: Optional[Union[date, datetime, str]],
    est_time_hrs: Optional[float],
    hours_per_day: float = DEFAULT_HOURS_PER_DAY,
    now: Optional[datetime] = None,
) -> int:
    """
    Urgency from 1 to 10 based on workload vs. available time.

    Tasks without a due date or an estimate get the default urgency of 5.
    A task with no working hours left before it is due is maximally urgent.
    """
    if not due_date or not est_time_hrs:
        return DEFAULT_URGENCY
    if now is None:
        now = datetime.now(timezone.utc)

    remaining = (_due_datetime(due_date) - now).total_seconds()
    days_available = max(0, math.ceil(remaining / SECONDS_PER_DAY))
    hours_available = days_available * hours_per_day

    if hours_available <= 0:
        return 10

    urgency = _round_half_up(1 + 9 * (est_time_hrs / hours_available))
    return min(10, max(1, urgency))


def get_quadrant(importance: int, urgency: int) -> Quadrant:
    """Place a task in the Eisenhower Matrix."""
    important = importance >= QUADRANT_THRESHOLD
    urgent = urgency >= QUADRANT_THRESHOLD

    if important and urgent:
        return Quadrant.URGENT_IMPORTANT
    if important:
        return Quadrant.IMPORTANT_NOT_URGENT
    if urgent:
        return Quadrant.URGENT_NOT_IMPORTANT
    return Quadrant.NOT_URGENT_NOT_IMPORTANT


def build_matrix(
    tasks: Iterable[Task],
    hours_per_day: float = DEFAULT_HOURS_PER_DAY,
    now: Optional[datetime] = None,
) -> Dict[Quadrant, List[MatrixTask]]:
    """Group tasks by quadrant. Every quadrant is present, possibly empty."""
    matrix: Dict[Quadrant, List[MatrixTask]] = {quadrant: [] for quadrant in Quadrant}

    for task in tasks:
        urgency = calculate_urgency(task.due_date, task.est_time_hrs, hours_per_day, now)
        quadrant = get_quadrant(task.importance, urgency)
        matrix[quadrant].append(
            MatrixTask(**task.model_dump(), urgency=urgency, quadrant=quadrant)
        )

    return matrix
