#!/usr/bin/env python3
"""
Dev helper: send a test inbound-email webhook to the local Taskmatrix backend.

Builds the webhook body in one of the payload shapes the normalizer accepts
and POST-s it to /api/email-intake/inbound.

Usage
-----
# Simple JSON object to USER_ID@tasks.taskmatrix.app on localhost:8000
python scripts/send_test_email.py --user-id USER_ID

# Mailgun-style form post
python scripts/send_test_email.py --user-id USER_ID --shape mailgun

# Nested event, array and array-like object shapes
python scripts/send_test_email.py --user-id USER_ID --shape event-data
python scripts/send_test_email.py --user-id USER_ID --shape array
python scripts/send_test_email.py --user-id USER_ID --shape array-like

Environment / .env
------------------
INBOUND_WEBHOOK_SECRET   Sent as X-Webhook-Secret when set.
INBOUND_EMAIL_DOMAIN     Domain of the recipient address
                         (default: tasks.taskmatrix.app).
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv

DEFAULT_BODY = (
    "Hi,\n\n"
    "Could you review the Q3 budget draft before Friday's meeting? "
    "The numbers for marketing still look off.\n\n"
    "Thanks\n"
    "--\n"
    "Sam"
)


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def _fields(from_email: str, to_address: str, subject: str, text: str) -> dict:
    return {"from": from_email, "to": to_address, "subject": subject, "text": text}


def _build_simple(from_email, to_address, subject, text):
    """Flat JSON object with from / to / subject / text."""
    return _fields(from_email, to_address, subject, text)


def _build_mailgun(from_email, to_address, subject, text):
    """Mailgun route form fields (sent form-encoded, not JSON)."""
    return {
        "sender": from_email,
        "recipient": to_address,
        "subject": subject,
        "body-plain": text,
        "stripped-text": text,
    }


def _build_event_data(from_email, to_address, subject, text):
    """Event envelope with the headers nested under event-data.message."""
    return {
        "event-data": {
            "event": "stored",
            "message": {
                "headers": {"from": from_email, "to": to_address, "subject": subject},
                "body-plain": text,
            },
        }
    }


def _build_array(from_email, to_address, subject, text):
    """Batch of events where only one element carries the email."""
    return [
        {"event": "delivered", "id": "evt-1"},
        _fields(from_email, to_address, subject, text),
        {"event": "opened", "id": "evt-3"},
    ]


def _build_array_like(from_email, to_address, subject, text):
    """The same batch serialized as an object with numeric keys."""
    return {str(i): item for i, item in enumerate(_build_array(from_email, to_address, subject, text))}


_PAYLOAD_BUILDERS = {
    "simple": _build_simple,
    "mailgun": _build_mailgun,
    "event-data": _build_event_data,
    "array": _build_array,
    "array-like": _build_array_like,
}

_FORM_SHAPES = {"mailgun"}


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_email.py",
        description="Send a test inbound-email webhook to the Taskmatrix backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_email.py --user-id abc123
              python scripts/send_test_email.py --user-id abc123 --shape mailgun
              python scripts/send_test_email.py --user-id abc123 --subject "Urgent: call back tomorrow"
        """),
    )
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument("--user-id", required=True, help="User id used as the recipient local part")
    parser.add_argument("--shape", default="simple", choices=list(_PAYLOAD_BUILDERS), help="Payload shape")
    parser.add_argument("--from", dest="from_email", default="colleague@example.com", help="Sender address")
    parser.add_argument("--subject", default="Fwd: Review Q3 budget due: 2030-01-15", help="Email subject")
    parser.add_argument("--body", default=DEFAULT_BODY, help="Plain-text body")
    parser.add_argument("--secret", default=None, help="Override INBOUND_WEBHOOK_SECRET")
    parser.add_argument("--dry-run", action="store_true", help="Print the payload without sending it")

    args = parser.parse_args()

    domain = os.getenv("INBOUND_EMAIL_DOMAIN", "tasks.taskmatrix.app")
    to_address = f"{args.user_id}@{domain}"
    payload = _PAYLOAD_BUILDERS[args.shape](args.from_email, to_address, args.subject, args.body)
    endpoint = f"{args.url.rstrip('/')}/api/email-intake/inbound"

    print(f"Shape     : {args.shape}")
    print(f"Endpoint  : {endpoint}")
    print(f"From      : {args.from_email}")
    print(f"To        : {to_address}")
    print(f"Subject   : {args.subject}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2))
        return 0

    headers = {}
    secret = args.secret or os.getenv("INBOUND_WEBHOOK_SECRET")
    if secret:
        headers["X-Webhook-Secret"] = secret

    try:
        if args.shape in _FORM_SHAPES:
            response = httpx.post(endpoint, data=payload, headers=headers, timeout=30)
        else:
            response = httpx.post(endpoint, json=payload, headers=headers, timeout=30)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the backend running? Start it with:\n"
            "  cd backend && uvicorn app.main:app --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
