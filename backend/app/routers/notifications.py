"""
Notification endpoints.

Environment variables
---------------------
SCHEDULER_SECRET    Shared secret the external scheduler sends in the
                    X-Scheduler-Secret header when triggering digests.

Endpoints:
  PUT  /token            store the caller's push token (auth: JWT)
  POST /digest/{kind}    send a digest to every user (auth: X-Scheduler-Secret)
"""

import hmac
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from app.auth import get_current_user
from app.db import supabase_admin
from app.services.notifications import DigestKind, run_digest

logger = logging.getLogger(__name__)

router = APIRouter()


class PushTokenUpdate(BaseModel):
    token: str = Field(min_length=1, max_length=4096)


def _verify_scheduler_secret(x_scheduler_secret: Optional[str] = Header(None)) -> None:
    """Raises 401 unless X-Scheduler-Secret matches SCHEDULER_SECRET."""
    expected = os.getenv("SCHEDULER_SECRET", "")
    if not expected:
        logger.warning("SCHEDULER_SECRET is not configured; rejecting digest request")
        raise HTTPException(status_code=401, detail="Scheduler secret not configured")

    if not x_scheduler_secret or not hmac.compare_digest(x_scheduler_secret, expected):
        raise HTTPException(status_code=401, detail="Invalid scheduler secret")


@router.put("/token")
async def update_push_token(
    body: PushTokenUpdate,
    user_id: str = Depends(get_current_user),
):
    """Store the caller's push token, creating their user row if needed."""
    result = (
        supabase_admin.table("users")
        .upsert({"id": user_id, "fcm_token": body.token})
        .execute()
    )

    if not result.data:
        raise HTTPException(status_code=500, detail="Failed to update push token")

    logger.info(f"Push token updated for user {user_id}")
    return {"success": True}


@router.post("/digest/{kind}")
async def trigger_digest(
    kind: DigestKind,
    _: None = Depends(_verify_scheduler_secret),
):
    """Compose and send the morning, afternoon, evening or overdue digest."""
    try:
        return run_digest(kind)
    except Exception as e:
        logger.error(f"{kind.value} digest failed: {e}")
        raise HTTPException(status_code=500, detail=f"Digest failed: {str(e)}")
