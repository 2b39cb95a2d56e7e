"""
Task and category management API endpoints.

All endpoints require authentication and only ever touch the caller's rows.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.auth import get_current_user, verify_category_ownership, verify_task_ownership
from app.db import supabase_admin
from app.models.inbound_email import EMAIL_TASK_AREA
from app.models.task import (
    Category,
    CategoryCreate,
    CategoryUpdate,
    EisenhowerMatrix,
    Task,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
)
from app.services.prioritization import DEFAULT_HOURS_PER_DAY, build_matrix

logger = logging.getLogger(__name__)

router = APIRouter()
categories_router = APIRouter()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

@router.post("/", response_model=Task)
async def create_task(
    task: TaskCreate,
    user_id: str = Depends(get_current_user),
):
    """Create a task. It starts open, noted now."""
    insert_data = task.model_dump(mode="json")
    insert_data.update({
        "user_id": user_id,
        "status": TaskStatus.OPEN.value,
        "date_noted": datetime.now(timezone.utc).isoformat(),
    })

    result = supabase_admin.table("tasks").insert(insert_data).execute()

    if not result.data:
        raise HTTPException(status_code=500, detail="Failed to create task")

    return Task(**result.data[0])


@router.get("/", response_model=List[Task])
async def list_tasks(
    area: Optional[str] = Query(default=None),
    status: Optional[TaskStatus] = Query(default=None),
    user_id: str = Depends(get_current_user),
):
    """List the caller's tasks, newest first. Optionally filter by area and status."""
    query = supabase_admin.table("tasks").select("*").eq("user_id", user_id)

    if area:
        query = query.eq("area", area)
    if status:
        query = query.eq("status", status.value)

    result = query.order("date_noted", desc=True).execute()
    return [Task(**row) for row in result.data]


@router.get("/matrix", response_model=EisenhowerMatrix)
async def get_matrix(
    hours_per_day: float = Query(default=DEFAULT_HOURS_PER_DAY, gt=0, le=24),
    user_id: str = Depends(get_current_user),
):
    """Open tasks grouped into Eisenhower quadrants with their computed urgency."""
    result = (
        supabase_admin.table("tasks")
        .select("*")
        .eq("user_id", user_id)
        .eq("status", TaskStatus.OPEN.value)
        .execute()
    )
    tasks = [Task(**row) for row in result.data]
    return EisenhowerMatrix(
        hours_per_day=hours_per_day,
        quadrants=build_matrix(tasks, hours_per_day=hours_per_day),
    )


@router.get("/{task_id}", response_model=Task)
async def get_task(
    task_id: str,
    user_id: str = Depends(get_current_user),
):
    task = await verify_task_ownership(task_id, user_id)
    return Task(**task)


@router.patch("/{task_id}", response_model=Task)
async def update_task(
    task_id: str,
    update: TaskUpdate,
    user_id: str = Depends(get_current_user),
):
    """Apply a partial update. Fields left out of the request are not touched."""
    task = await verify_task_ownership(task_id, user_id)

    update_data = update.model_dump(mode="json", exclude_unset=True)
    if not update_data:
        return Task(**task)

    result = supabase_admin.table("tasks").update(update_data).eq("id", task_id).execute()

    if not result.data:
        raise HTTPException(status_code=500, detail="Failed to update task")

    return Task(**result.data[0])


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    user_id: str = Depends(get_current_user),
):
    await verify_task_ownership(task_id, user_id)

    result = supabase_admin.table("tasks").delete().eq("id", task_id).execute()

    if not result.data:
        raise HTTPException(status_code=404, detail="Task not found")

    logger.info(f"Task {task_id} deleted by user {user_id}")
    return {"message": "Task deleted"}


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def _reject_reserved_name(name: str) -> None:
    """The email intake area is built in and cannot be shadowed by a user category."""
    if name.strip().lower() == EMAIL_TASK_AREA:
        raise HTTPException(status_code=400, detail=f"'{name}' is a reserved category name")


@categories_router.get("/", response_model=List[Category])
async def list_categories(user_id: str = Depends(get_current_user)):
    result = (
        supabase_admin.table("categories")
        .select("*")
        .eq("user_id", user_id)
        .order("name")
        .execute()
    )
    return [Category(**row) for row in result.data]


@categories_router.post("/", response_model=Category)
async def create_category(
    category: CategoryCreate,
    user_id: str = Depends(get_current_user),
):
    """Create a category. Names are unique per user, ignoring case."""
    _reject_reserved_name(category.name)

    existing = (
        supabase_admin.table("categories")
        .select("id, name")
        .eq("user_id", user_id)
        .execute()
    )
    if any(row["name"].lower() == category.name.lower() for row in existing.data or []):
        raise HTTPException(status_code=409, detail=f"Category '{category.name}' already exists")

    result = supabase_admin.table("categories").insert({
        "user_id": user_id,
        "name": category.name,
        "color": category.color,
    }).execute()

    if not result.data:
        raise HTTPException(status_code=500, detail="Failed to create category")

    return Category(**result.data[0])


@categories_router.patch("/{category_id}", response_model=Category)
async def update_category(
    category_id: str,
    update: CategoryUpdate,
    user_id: str = Depends(get_current_user),
):
    category = await verify_category_ownership(category_id, user_id)
    if update.name is not None:
        _reject_reserved_name(update.name)

    update_data = update.model_dump(exclude_unset=True)
    if not update_data:
        return Category(**category)

    result = supabase_admin.table("categories").update(update_data).eq("id", category_id).execute()

    if not result.data:
        raise HTTPException(status_code=500, detail="Failed to update category")

    return Category(**result.data[0])


@categories_router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    user_id: str = Depends(get_current_user),
):
    """Delete a category. Tasks filed under it keep their area name."""
    await verify_category_ownership(category_id, user_id)

    result = supabase_admin.table("categories").delete().eq("id", category_id).execute()

    if not result.data:
        raise HTTPException(status_code=404, detail="Category not found")

    return {"message": "Category deleted"}
