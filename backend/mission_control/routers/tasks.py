"""
Scheduled task routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional

from ..database import get_db
from ..models.profile import Profile
from ..schemas.task import (
    CronPreset,
    TaskCreate,
    TaskExecutionResponse,
    TaskFilters,
    TaskResponse,
    TaskUpdate,
)
from ..services.scheduler_service import CRON_PRESETS, TaskScheduler
from ..utils.security import get_current_user_optional, user_id_of


router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


def _bad_request(e: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/cron-presets", response_model=List[CronPreset])
async def cron_presets():
    return CRON_PRESETS


@router.get("/upcoming", response_model=List[TaskResponse])
async def upcoming_tasks(
    limit: int = Query(10, ge=1, le=100),
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Active tasks ordered by their next run."""
    return await TaskScheduler(db).get_upcoming_tasks(user_id_of(current_user), limit)


@router.get("", response_model=List[TaskResponse])
async def list_tasks(
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    type_filter: Optional[List[str]] = Query(None, alias="type"),
    search: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    category: Optional[str] = None,
    has_errors: Optional[bool] = None,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    try:
        filters = TaskFilters(
            status=status_filter,
            type=type_filter,
            search=search,
            tags=tags,
            category=category,
            has_errors=has_errors,
        )
    except ValueError as e:
        raise _bad_request(e)
    return await TaskScheduler(db).list_tasks(user_id_of(current_user), filters)


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    data: TaskCreate,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await TaskScheduler(db).create_task(data, user_id_of(current_user))
    except ValueError as e:
        raise _bad_request(e)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    return await TaskScheduler(db).require_task(task_id, user_id_of(current_user))


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    updates: TaskUpdate,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await TaskScheduler(db).update_task(task_id, updates, user_id_of(current_user))
    except ValueError as e:
        raise _bad_request(e)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    await TaskScheduler(db).delete_task(task_id, user_id_of(current_user))


@router.post("/{task_id}/pause", response_model=TaskResponse)
async def pause_task(
    task_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    return await TaskScheduler(db).pause_task(task_id, user_id_of(current_user))


@router.post("/{task_id}/resume", response_model=TaskResponse)
async def resume_task(
    task_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    return await TaskScheduler(db).resume_task(task_id, user_id_of(current_user))


@router.post("/{task_id}/run", response_model=TaskExecutionResponse)
async def run_task(
    task_id: str,
    variables: Optional[Dict[str, Any]] = None,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Execute a task immediately; the execution record carries the outcome."""
    return await TaskScheduler(db).run_now(task_id, user_id_of(current_user), variables)


@router.get("/{task_id}/executions", response_model=List[TaskExecutionResponse])
async def list_executions(
    task_id: str,
    limit: int = Query(50, ge=1, le=500),
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    scheduler = TaskScheduler(db)
    await scheduler.require_task(task_id, user_id_of(current_user))
    return await scheduler.get_executions(task_id, limit)
