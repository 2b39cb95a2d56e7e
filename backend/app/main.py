"""
Taskmatrix Backend API
FastAPI application for Eisenhower Matrix task management and email-to-task intake.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.db import supabase_admin
from app.routers import email_intake, notifications, tasks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

# Local Next.js dev server
DEFAULT_CORS_ORIGINS = ["http://localhost:3000"]

app = FastAPI(
    title="Taskmatrix API",
    description="Eisenhower Matrix task management with email-to-task intake",
    version=API_VERSION,
)


def get_cors_origins() -> List[str]:
    """
    Allowed CORS origins: the defaults plus the comma-separated CORS_ORIGINS
    variable, e.g. CORS_ORIGINS=https://taskmatrix.app,https://preview.taskmatrix.app

    Order is preserved and repeats are dropped.
    """
    configured = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",")]
    return list(dict.fromkeys(DEFAULT_CORS_ORIGINS + [o for o in configured if o]))


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router, prefix, tag in (
    (tasks.router, "/api/tasks", "tasks"),
    (tasks.categories_router, "/api/categories", "categories"),
    (email_intake.router, "/api/email-intake", "email-intake"),
    (notifications.router, "/api/notifications", "notifications"),
):
    app.include_router(router, prefix=prefix, tags=[tag])


@app.on_event("startup")
async def log_startup_url() -> None:
    # HOST_PORT is the host side of the Docker port mapping
    logger.info("Taskmatrix API running at http://localhost:%s", os.getenv("HOST_PORT", "8000"))


@app.get("/")
async def root():
    return {"message": "Taskmatrix API", "version": API_VERSION}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """Probe the tasks table. 503 when the service client is missing or the query fails."""
    if supabase_admin is None:
        raise HTTPException(status_code=503, detail="Database client unavailable: SUPABASE_SERVICE_KEY is not set")

    try:
        supabase_admin.table("tasks").select("id").limit(1).execute()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        raise HTTPException(status_code=503, detail=f"Database unreachable: {str(e)}")

    return {"status": "ok", "database": "reachable"}
