"""
Authentication dependencies.

get_current_user resolves the caller from a Supabase access token. Tokens are
checked locally with python-jose when SUPABASE_JWT_SECRET is configured and
through the Supabase Auth API otherwise. The ownership helpers load a row with
the service client and make sure it belongs to the caller.
"""

import logging
import os
from typing import Optional

from fastapi import Header, HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

from app.db import supabase, supabase_admin

logger = logging.getLogger(__name__)

# Project Settings > API > JWT Secret. When unset, tokens are checked remotely.
SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _bearer_token(authorization: Optional[str]) -> str:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise _unauthorized("Not authenticated")

    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        raise _unauthorized("Invalid authentication credentials")
    return token


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency returning the authenticated user's id (the JWT ``sub``).

    Raises:
        HTTPException: 401 when the header is missing or malformed, or the
        token is invalid or expired
    """
    token = _bearer_token(authorization)
    if SUPABASE_JWT_SECRET:
        return _verify_jwt_locally(token)
    return await _verify_jwt_remotely(token)


def _verify_jwt_locally(token: str) -> str:
    try:
        claims = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},  # aud is the "authenticated" role
        )
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")

    subject = claims.get("sub")
    if not subject:
        raise _unauthorized("Invalid token")
    return subject


async def _verify_jwt_remotely(token: str) -> str:
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        # supabase-py raises AuthApiError with the reason in its message
        if "expired" in str(e).lower():
            raise _unauthorized("Token expired")
        raise _unauthorized("Invalid token")

    if not response or not response.user:
        raise _unauthorized("Invalid token")
    return response.user.id


async def _verify_ownership(table: str, row_id: str, user_id: str, label: str) -> dict:
    try:
        rows = supabase_admin.table(table).select("*").eq("id", row_id).execute().data
    except Exception as e:
        logger.error(f"Ownership lookup on {table} failed for {row_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to verify ownership")

    if not rows:
        raise HTTPException(status_code=404, detail=f"{label} not found")

    row = rows[0]
    if row.get("user_id") != user_id:
        raise HTTPException(status_code=403, detail=f"You are not authorized to access this {label.lower()}")
    return row


async def verify_task_ownership(task_id: str, user_id: str) -> dict:
    """
    Return the task row when it belongs to user_id.

    Raises:
        HTTPException: 404 if not found, 403 if owned by someone else, 500 on database error
    """
    return await _verify_ownership("tasks", task_id, user_id, "Task")


async def verify_category_ownership(category_id: str, user_id: str) -> dict:
    """Same as verify_task_ownership, for categories."""
    return await _verify_ownership("categories", category_id, user_id, "Category")
