"""
Pydantic models for tasks and categories.
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    OPEN = "open"
    COMPLETE = "complete"


class Recurrence(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Quadrant(str, Enum):
    """Eisenhower Matrix quadrants."""
    URGENT_IMPORTANT = "urgent-important"
    IMPORTANT_NOT_URGENT = "important-not-urgent"
    URGENT_NOT_IMPORTANT = "urgent-not-important"
    NOT_URGENT_NOT_IMPORTANT = "not-urgent-not-important"


# Built-in areas. Users may also file tasks under their own categories.
DEFAULT_AREAS = ["personal", "work", "business", "academic", "inbox"]


class TaskCreate(BaseModel):
    """Request to create a task."""
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    area: str = "personal"
    due_date: Optional[date] = None
    est_time_hrs: Optional[float] = Field(default=None, gt=0)
    importance: int = Field(default=5, ge=1, le=10)
    recurrence: Recurrence = Recurrence.NONE
    interval: Optional[int] = Field(default=None, ge=1)
    weekdays: Optional[List[int]] = None  # 0-6 (Sunday-Saturday)


class TaskUpdate(BaseModel):
    """Partial update. Only fields that are set are written."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    area: Optional[str] = None
    due_date: Optional[date] = None
    est_time_hrs: Optional[float] = Field(default=None, gt=0)
    real_time_hrs: Optional[float] = Field(default=None, ge=0)
    importance: Optional[int] = Field(default=None, ge=1, le=10)
    status: Optional[TaskStatus] = None
    recurrence: Optional[Recurrence] = None
    interval: Optional[int] = Field(default=None, ge=1)
    weekdays: Optional[List[int]] = None
    next_date: Optional[date] = None


class Task(BaseModel):
    """Full task record from the database."""
    model_config = {"from_attributes": True, "extra": "ignore"}

    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    area: str
    date_noted: str
    due_date: Optional[date] = None
    est_time_hrs: Optional[float] = None
    real_time_hrs: Optional[float] = None
    importance: int
    status: TaskStatus = TaskStatus.OPEN
    recurrence: Recurrence = Recurrence.NONE
    interval: Optional[int] = None
    weekdays: Optional[List[int]] = None
    next_date: Optional[date] = None
    # Set only for tasks created from inbound email
    email_source: Optional[Dict[str, Any]] = None


class MatrixTask(Task):
    """Task annotated with its computed urgency and matrix quadrant."""
    urgency: int
    quadrant: Quadrant


class EisenhowerMatrix(BaseModel):
    """Open tasks grouped by quadrant, returned by GET /api/tasks/matrix."""
    hours_per_day: float
    quadrants: Dict[Quadrant, List[MatrixTask]]


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    color: str = Field(default="#6b7280", pattern=r"^#[0-9a-fA-F]{6}$")


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")


class Category(BaseModel):
    """Category record from the database."""
    model_config = {"from_attributes": True, "extra": "ignore"}

    id: str
    user_id: str
    name: str
    color: str
