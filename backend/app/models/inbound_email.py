"""
Inbound email models for the email-to-task pipeline.

  RawEmailFields — best-effort tuple produced by the payload normalizer.
                   Any field may be empty; completeness is judged by the caller.
  InboundEmail   — validated, sanitized email for a single request.
  EmailSource    — provenance block attached to every email-created task.
  TaskDraft      — task fields derived from an InboundEmail, not yet persisted.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

# Reserved area for tasks created from email. User-defined categories never
# use this value.
EMAIL_TASK_AREA = "inbox"


@dataclass(frozen=True)
class RawEmailFields:
    """Normalizer output. Strings only, empty when not found."""

    sender_email: str = ""
    recipient_email: str = ""
    subject: str = ""
    text: str = ""
    html: str = ""

    def is_complete(self) -> bool:
        """True when from, to and subject were all located."""
        return bool(self.sender_email and self.recipient_email and self.subject)

    def missing_fields(self) -> list[str]:
        missing = []
        if not self.sender_email:
            missing.append("from")
        if not self.recipient_email:
            missing.append("to")
        if not self.subject:
            missing.append("subject")
        return missing


class InboundEmail(BaseModel):
    """
    Sanitized inbound email.

    sender_email is validated and lowercased. recipient_email keeps the
    casing it arrived with because its local part is the user identifier.
    received_at is assigned by the server, never taken from the payload.
    """

    sender_email: str
    recipient_email: str
    subject: str
    text: Optional[str] = None
    html: Optional[str] = None
    received_at: datetime


class EmailSource(BaseModel):
    """Provenance of an email-created task."""

    model_config = {"frozen": True}

    sender: str
    received_at: datetime
    original_subject: str


class TaskDraft(BaseModel):
    """Task fields derived from an inbound email."""

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=5000)
    area: str = EMAIL_TASK_AREA
    importance: int = Field(default=5, ge=1, le=10)
    due_date: Optional[date] = None
    email_source: EmailSource
