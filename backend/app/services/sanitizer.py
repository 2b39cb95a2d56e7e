"""
Sanitization and validation helpers for inbound email fields.

Every helper is total: bad input yields None or a fixed default, never an
exception. The only hard failure in the email pipeline is a required field
(from / to / subject) that is still unusable after sanitization, and that is
decided by validate_email_fields(), not by the individual helpers.
"""

import html
import re
from datetime import datetime
from typing import Any, Optional

from app.models.inbound_email import InboundEmail, RawEmailFields

DEFAULT_SUBJECT = "Email Task"

MAX_EMAIL_BYTES = 254
MAX_SUBJECT_LENGTH = 200
MAX_BODY_LENGTH = 5000

_EMAIL_RE = re.compile(r"^[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}$")

# "Alice <alice@example.com>" -> "alice@example.com"
_BRACKETED_ADDRESS_RE = re.compile(r"<([^<>]+)>")

_ANGLE_BRACKETS_RE = re.compile(r"[<>]")

# All C0 controls plus DEL. Bodies keep \t, \n and \r.
_SUBJECT_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_BODY_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# Only the five basic entities are decoded; anything else stays literal.
_BASIC_ENTITIES = {
    "&quot;": '"',
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&#39;": "'",
}
_BASIC_ENTITY_RE = re.compile("|".join(re.escape(e) for e in _BASIC_ENTITIES))


def _unwrap_address(value: str) -> str:
    """Return the bracketed address from a display-name form, else the input trimmed."""
    match = _BRACKETED_ADDRESS_RE.search(value)
    return (match.group(1) if match else value).strip()


def validate_email(value: Any) -> Optional[str]:
    """
    Validate an email address claim.

    Returns the address trimmed and lowercased, or None when it is not a
    plausible local@domain.tld address or exceeds 254 bytes.
    """
    if not isinstance(value, str):
        return None

    address = _unwrap_address(value).lower()
    if not address:
        return None
    if len(address.encode("utf-8")) > MAX_EMAIL_BYTES:
        return None
    if not _EMAIL_RE.match(address):
        return None
    return address


def extract_user_identifier(recipient: Any) -> Optional[str]:
    """
    Return the user identifier encoded in a recipient address.

    The identifier is the local part of the address in the casing it was
    received with; user ids are case-sensitive in the user store. Returns
    None when the recipient does not validate.
    """
    if validate_email(recipient) is None:
        return None
    address = _unwrap_address(recipient)
    local_part, _, _ = address.rpartition("@")
    return local_part or None


def sanitize_subject(value: Any) -> str:
    """Strip brackets and control characters, trim, truncate; empty -> default."""
    if not isinstance(value, str):
        return DEFAULT_SUBJECT

    cleaned = _ANGLE_BRACKETS_RE.sub("", value)
    cleaned = _SUBJECT_CONTROL_RE.sub("", cleaned)
    cleaned = cleaned.strip()[:MAX_SUBJECT_LENGTH].strip()
    return cleaned or DEFAULT_SUBJECT


def decode_basic_entities(value: str) -> str:
    """Decode &quot; &amp; &lt; &gt; &#39; in a single pass."""
    return _BASIC_ENTITY_RE.sub(lambda m: _BASIC_ENTITIES[m.group(0)], value)


def sanitize_body(value: Any) -> str:
    """Strip brackets and control characters, decode basic entities, trim, truncate."""
    if not isinstance(value, str):
        return ""

    cleaned = _ANGLE_BRACKETS_RE.sub("", value)
    cleaned = _BODY_CONTROL_RE.sub("", cleaned)
    cleaned = decode_basic_entities(cleaned)
    return cleaned.strip()[:MAX_BODY_LENGTH].strip()


def strip_html_to_text(value: str) -> str:
    """Drop tags and decode all HTML entities. Used for html-only emails."""
    return html.unescape(re.sub(r"<[^>]*>", "", value))


def validate_email_fields(
    raw: RawEmailFields,
    received_at: datetime,
) -> tuple[Optional[InboundEmail], dict[str, str]]:
    """
    Sanitize and validate the required fields of a normalized email.

    Returns (email, field_report). field_report maps "from", "to" and
    "subject" to "valid", "missing" or "invalid". email is None unless all
    three are valid.

    Bodies are passed through untouched here; the task extractor cleans them
    and sanitizes the resulting description.
    """
    report: dict[str, str] = {}

    sender = validate_email(raw.sender_email) if raw.sender_email else None
    if not raw.sender_email:
        report["from"] = "missing"
    else:
        report["from"] = "valid" if sender else "invalid"

    recipient_ok = bool(raw.recipient_email) and validate_email(raw.recipient_email) is not None
    if not raw.recipient_email:
        report["to"] = "missing"
    else:
        report["to"] = "valid" if recipient_ok else "invalid"

    report["subject"] = "valid" if raw.subject.strip() else "missing"

    if any(status != "valid" for status in report.values()):
        return None, report

    email = InboundEmail(
        sender_email=sender,
        recipient_email=_unwrap_address(raw.recipient_email),
        subject=sanitize_subject(raw.subject),
        text=raw.text or None,
        html=raw.html or None,
        received_at=received_at,
    )
    return email, report
