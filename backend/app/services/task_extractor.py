"""
Email-to-task extraction.

Derives a TaskDraft from a sanitized InboundEmail:

  title:        subject with a single leading reply/forward marker removed
  due_date:     inferred from the subject ("due: 2025-01-15", "tomorrow",
                "next week")
  importance:   inferred from subject keywords, clamped to 1..10
  description:  body with forwarded headers, quoted replies and signatures
                removed, then sanitized

Each rule is a separate function so it can be tested on its own.
"""

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from app.models.inbound_email import (
    EMAIL_TASK_AREA,
    EmailSource,
    InboundEmail,
    TaskDraft,
)
from app.services.sanitizer import sanitize_body, strip_html_to_text

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Email Task"
NO_DESCRIPTION = "No description provided"
DEFAULT_IMPORTANCE = 5

# Bodies longer than this are truncated before cleaning so the regex passes
# stay cheap on very large emails.
MAX_BODY_SCAN = 50_000

# A cleaned body shorter than this is assumed to be over-trimmed.
MIN_CLEANED_LENGTH = 50
MIN_PARAGRAPH_LENGTH = 20

# Single pass only: "Fwd: Fwd: Meeting" -> "Fwd: Meeting"
_REPLY_PREFIX_RE = re.compile(r"^(?:Fwd|Re|Fw|Forward|Reply):\s*", re.IGNORECASE)

_DUE_DATE_RE = re.compile(r"due:\s*(\d{4}-\d{2}-\d{2})", re.IGNORECASE)
_TOMORROW_RE = re.compile(r"tomorrow", re.IGNORECASE)
_NEXT_WEEK_RE = re.compile(r"next week", re.IGNORECASE)

# (pattern, importance), first match wins
_IMPORTANCE_TIERS = [
    (re.compile(r"urgent|asap|immediate", re.IGNORECASE), 9),
    (re.compile(r"high|important", re.IGNORECASE), 7),
    (re.compile(r"low|minor", re.IGNORECASE), 3),
]

_HTML_TAG_RE = re.compile(r"<[^>]*>")
_HEADER_PREFIX_RE = re.compile(
    r"^.*?(?=\b(?:From|To|Subject|Date|Sent|Cc|Bcc):)",
    re.IGNORECASE | re.MULTILINE,
)
_QUOTED_LINE_RE = re.compile(r"^>.*$", re.MULTILINE)
_SIGNATURE_RE = re.compile(r"^--[ \t]*\r?\n.*\Z", re.MULTILINE | re.DOTALL)
_FORWARD_PREFIX_RE = re.compile(
    r"^.*?(?=Original Message|\bFrom:|\bSent:)",
    re.IGNORECASE | re.MULTILINE,
)
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


# ---------------------------------------------------------------------------
# Subject rules
# ---------------------------------------------------------------------------

def clean_title(subject: Optional[str]) -> str:
    """Remove one leading Fwd:/Re:/Fw:/Forward:/Reply: marker."""
    if not subject:
        return DEFAULT_TITLE
    return _REPLY_PREFIX_RE.sub("", subject, count=1).strip() or DEFAULT_TITLE


def parse_explicit_due_date(subject: str) -> Optional[date]:
    """'Due: 2025-01-15' -> date(2025, 1, 15). Impossible dates are ignored."""
    match = _DUE_DATE_RE.search(subject)
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(1))
    except ValueError:
        logger.debug("Ignoring impossible due date %r", match.group(1))
        return None


def parse_tomorrow(subject: str, today: date) -> Optional[date]:
    if _TOMORROW_RE.search(subject):
        return today + timedelta(days=1)
    return None


def parse_next_week(subject: str, today: date) -> Optional[date]:
    if _NEXT_WEEK_RE.search(subject):
        return today + timedelta(days=7)
    return None


def extract_due_date(subject: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    Infer a due date from the subject line. First match wins:
    explicit "due: YYYY-MM-DD", then "tomorrow", then "next week".
    """
    if not subject:
        return None
    if today is None:
        today = datetime.now(timezone.utc).date()

    return (
        parse_explicit_due_date(subject)
        or parse_tomorrow(subject, today)
        or parse_next_week(subject, today)
    )


def clamp_importance(value: int) -> int:
    return max(1, min(10, int(value)))


def extract_importance(subject: Optional[str]) -> int:
    """urgent/asap/immediate -> 9, high/important -> 7, low/minor -> 3, else 5."""
    if subject:
        for pattern, importance in _IMPORTANCE_TIERS:
            if pattern.search(subject):
                return clamp_importance(importance)
    return clamp_importance(DEFAULT_IMPORTANCE)


# ---------------------------------------------------------------------------
# Body cleaning stages
# ---------------------------------------------------------------------------

def strip_html_tags(body: str) -> str:
    return _HTML_TAG_RE.sub("", body)


def strip_header_prefixes(body: str) -> str:
    """On each line, drop whatever precedes a From:/To:/Subject:/Date:/Sent:/Cc:/Bcc: label."""
    return _HEADER_PREFIX_RE.sub("", body)


def strip_quoted_lines(body: str) -> str:
    return _QUOTED_LINE_RE.sub("", body)


def strip_signature(body: str) -> str:
    """Drop everything from a '--' signature delimiter line to the end."""
    return _SIGNATURE_RE.sub("", body, count=1)


def strip_forward_markers(body: str) -> str:
    """On each line, drop whatever precedes 'Original Message', From: or Sent:."""
    return _FORWARD_PREFIX_RE.sub("", body)


def normalize_whitespace(body: str) -> str:
    """Trim every line, collapse runs of blank lines to one, trim the result."""
    lines = [line.strip() for line in body.replace("\r\n", "\n").split("\n")]
    return _BLANK_RUN_RE.sub("\n\n", "\n".join(lines)).strip()


def first_meaningful_paragraph(body: str) -> Optional[str]:
    """First blank-line separated paragraph longer than 20 characters."""
    for paragraph in _PARAGRAPH_SPLIT_RE.split(body):
        stripped = paragraph.strip()
        if len(stripped) > MIN_PARAGRAPH_LENGTH:
            return stripped
    return None


def clean_email_body(body: Optional[str]) -> str:
    """
    Run the cleaning stages in order and return the description text.

    When the stages leave fewer than 50 characters, the first paragraph of
    the tag-stripped original longer than 20 characters is used instead.
    Returns NO_DESCRIPTION when nothing meaningful is left.
    """
    if not body:
        return NO_DESCRIPTION

    text_only = strip_html_tags(body[:MAX_BODY_SCAN])

    cleaned = strip_header_prefixes(text_only)
    cleaned = strip_quoted_lines(cleaned)
    cleaned = strip_signature(cleaned)
    cleaned = strip_forward_markers(cleaned)
    cleaned = normalize_whitespace(cleaned)

    if len(cleaned) < MIN_CLEANED_LENGTH:
        paragraph = first_meaningful_paragraph(text_only)
        if paragraph:
            return paragraph

    return cleaned or NO_DESCRIPTION


def _select_body(email: InboundEmail) -> str:
    """Plain text wins over HTML. HTML is reduced to text first."""
    if email.text and email.text.strip():
        return email.text
    if email.html and email.html.strip():
        return strip_html_to_text(email.html[:MAX_BODY_SCAN])
    return ""


# ---------------------------------------------------------------------------
# Draft assembly
# ---------------------------------------------------------------------------

def build_task_draft(email: InboundEmail) -> TaskDraft:
    """
    Derive a TaskDraft from a validated InboundEmail.

    Due date and importance come from the subject; the due date is computed
    relative to the date the email was received.
    """
    title = clean_title(email.subject)
    due_date = extract_due_date(email.subject, today=email.received_at.date())
    importance = extract_importance(email.subject)

    description = sanitize_body(clean_email_body(_select_body(email))) or NO_DESCRIPTION

    logger.info(
        "Parsed email task: title_length=%d, description_length=%d, importance=%d, due_date=%s",
        len(title),
        len(description),
        importance,
        due_date,
    )

    return TaskDraft(
        title=title,
        description=description,
        area=EMAIL_TASK_AREA,
        importance=importance,
        due_date=due_date,
        email_source=EmailSource(
            sender=email.sender_email,
            received_at=email.received_at,
            original_subject=email.subject,
        ),
    )
