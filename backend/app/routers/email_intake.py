"""
Email intake router.

Turns inbound emails into tasks. Each user has a personal inbound address
whose local part is their user id; the mail provider posts every message
delivered to that domain to the webhook below.

The webhook is provider-agnostic: whatever shape the provider sends (JSON
object, nested event, array, form fields or text) is reduced to a single set
of email fields by the payload normalizer before validation.

Environment variables
---------------------
INBOUND_EMAIL_DOMAIN      Domain of the per-user inbound addresses
                          (default: "tasks.taskmatrix.app").
INBOUND_WEBHOOK_SECRET    Optional shared secret checked in the
                          X-Webhook-Secret header. When unset the webhook
                          accepts unauthenticated requests.

Endpoints:
  POST /inbound            provider webhook (auth: X-Webhook-Secret if configured)
  GET  /inbound-address    get user's inbound email address (auth: JWT)
"""

import hmac
import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request

from app.auth import get_current_user
from app.db import supabase_admin
from app.models.email_intake import InboundAddressResponse, InboundTaskResponse
from app.models.inbound_email import TaskDraft
from app.models.task import TaskStatus
from app.services.notifications import notify_task_created
from app.services.payload_normalizer import normalize_payload
from app.services.sanitizer import extract_user_identifier, validate_email_fields
from app.services.task_extractor import build_task_draft

logger = logging.getLogger(__name__)

router = APIRouter()

_DEFAULT_INBOUND_DOMAIN = "tasks.taskmatrix.app"

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

# Substrings of Supabase/PostgREST errors, lowercased
_PERMISSION_MARKERS = ("42501", "permission denied", "row-level security", "not authorized", "401", "403")
_QUOTA_MARKERS = ("quota", "rate limit", "too many requests", "429", "53400")


def _inbound_domain() -> str:
    return os.getenv("INBOUND_EMAIL_DOMAIN", _DEFAULT_INBOUND_DOMAIN)


# ---------------------------------------------------------------------------
# Webhook authentication dependency
# ---------------------------------------------------------------------------

def _verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    """
    Check the X-Webhook-Secret header when INBOUND_WEBHOOK_SECRET is set.

    Raises 401 if a secret is configured and the header is missing or wrong.
    """
    expected = os.getenv("INBOUND_WEBHOOK_SECRET", "")
    if not expected:
        return

    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _read_request_body(request: Request) -> Any:
    """
    Return the webhook body in a form the normalizer accepts.

    Form posts become a dict of their text fields (the first value wins for
    repeated names; file parts are ignored). Everything else is returned as
    raw bytes for the normalizer to decode.
    """
    raw = await request.body()
    content_type = request.headers.get("content-type", "").lower()
    if not content_type.startswith(_FORM_CONTENT_TYPES):
        return raw

    try:
        form = await request.form()
    except Exception as e:
        logger.warning(f"Could not parse form body, falling back to raw text: {e}")
        return raw

    fields: dict = {}
    for key, value in form.multi_items():
        if isinstance(value, str):
            fields.setdefault(key, value)
    return fields


def _escape_like(value: str) -> str:
    """Escape LIKE metacharacters so the identifier matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _resolve_user(identifier: str) -> Optional[dict]:
    """
    Find the user row for an inbound address identifier.

    Tries an exact id match first, then a case-insensitive one, since some
    providers lowercase the recipient address. Returns None if neither
    matches. Store errors propagate.
    """
    result = (
        supabase_admin.table("users")
        .select("id")
        .eq("id", identifier)
        .limit(1)
        .execute()
    )
    if result.data:
        return result.data[0]

    result = (
        supabase_admin.table("users")
        .select("id")
        .ilike("id", _escape_like(identifier))
        .limit(1)
        .execute()
    )
    if result.data:
        logger.info(f"Resolved inbound identifier {identifier!r} case-insensitively")
        return result.data[0]

    return None


def _categorize_store_error(error: Exception) -> str:
    """Map a Supabase error to permission_denied, quota_exceeded or store_error."""
    code = str(getattr(error, "code", "") or "").lower()
    text = f"{code} {error}".lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return "permission_denied"
    if any(marker in text for marker in _QUOTA_MARKERS):
        return "quota_exceeded"
    return "store_error"


def _store_failure(error: Exception, user_id: str) -> HTTPException:
    category = _categorize_store_error(error)
    logger.error(f"Task store error ({category}) for user {user_id}: {error}")
    return HTTPException(
        status_code=500,
        detail={
            "error": category,
            "message": "Failed to create task from email",
            "user_id": user_id,
        },
    )


def _insert_task(user_id: str, draft: TaskDraft) -> dict:
    """Persist a task built from an email and return the inserted row."""
    insert_data = {
        "user_id": user_id,
        "title": draft.title,
        "description": draft.description,
        "area": draft.area,
        "importance": draft.importance,
        "status": TaskStatus.OPEN.value,
        "date_noted": datetime.now(timezone.utc).isoformat(),
        "due_date": draft.due_date.isoformat() if draft.due_date else None,
        "email_source": draft.email_source.model_dump(mode="json"),
    }

    result = supabase_admin.table("tasks").insert(insert_data).execute()
    if not result.data:
        raise RuntimeError("Insert returned no data")
    return result.data[0]


# ---------------------------------------------------------------------------
# Webhook endpoint
# ---------------------------------------------------------------------------

@router.post("/inbound", response_model=InboundTaskResponse)
async def receive_inbound_email(
    request: Request,
    background_tasks: BackgroundTasks,
    _: None = Depends(_verify_webhook_secret),
) -> InboundTaskResponse:
    """
    Create a task from an inbound email.

    Responses:
      200  task created
      400  from / to / subject missing or invalid (per-field report)
      404  no user matches the recipient address
      500  the task could not be stored (categorized)
    """
    body = await _read_request_body(request)
    received_at = datetime.now(timezone.utc)

    raw_fields = normalize_payload(body)
    email, field_report = validate_email_fields(raw_fields, received_at)
    if email is None:
        logger.warning(f"Rejected inbound email, field report: {field_report}")
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_email_fields",
                "message": "Missing or invalid required email fields",
                "fields": field_report,
            },
        )

    identifier = extract_user_identifier(email.recipient_email)
    if not identifier:
        # Recipient validated above, so this only happens for odd local parts
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_email_fields",
                "message": "Missing or invalid required email fields",
                "fields": {**field_report, "to": "invalid"},
            },
        )

    try:
        user = _resolve_user(identifier)
    except Exception as e:
        raise _store_failure(e, identifier)

    if user is None:
        logger.warning(f"Inbound email for unknown user {identifier!r}")
        raise HTTPException(
            status_code=404,
            detail={
                "error": "unknown_user",
                "message": "No user found for recipient address",
                "identifier": identifier,
            },
        )

    user_id = user["id"]
    draft = build_task_draft(email)

    try:
        row = _insert_task(user_id, draft)
    except Exception as e:
        raise _store_failure(e, user_id)

    logger.info(f"Task {row['id']} created from email for user {user_id}")

    # Runs after the response is sent; failures are logged, never surfaced
    background_tasks.add_task(
        notify_task_created, user_id, draft.title, draft.due_date, received_at.date()
    )

    return InboundTaskResponse(
        task_id=str(row["id"]),
        title=draft.title,
        area=draft.area,
        importance=draft.importance,
        status=TaskStatus.OPEN.value,
        due_date=draft.due_date,
    )


# ---------------------------------------------------------------------------
# JWT-protected endpoints
# ---------------------------------------------------------------------------

@router.get("/inbound-address", response_model=InboundAddressResponse)
async def get_inbound_address(
    user_id: str = Depends(get_current_user),
) -> InboundAddressResponse:
    """Return the address the user forwards email to."""
    return InboundAddressResponse(
        inbound_address=f"{user_id}@{_inbound_domain()}",
        user_id=user_id,
    )
