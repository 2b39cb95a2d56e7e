"""
Pydantic models for the email intake endpoints.

Models:
  InboundTaskResponse    — body of a successful POST /inbound
  InboundAddressResponse — body of GET /inbound-address
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel


class InboundTaskResponse(BaseModel):
    """A task was created from an inbound email."""

    success: bool = True
    task_id: str
    title: str
    area: str
    importance: int
    status: str
    due_date: Optional[date] = None
    message: str = "Task created successfully from email"


class InboundAddressResponse(BaseModel):
    """The address a user forwards email to in order to create tasks."""

    inbound_address: str
    user_id: str
