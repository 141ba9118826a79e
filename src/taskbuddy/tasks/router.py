"""Task API endpoints: create/update with overlap review, capacity."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.database import get_session
from taskbuddy.db.models import Task
from taskbuddy.tasks.schemas import (
    AssignmentResponse,
    OverlapWarningResponse,
    TaskCreateRequest,
    TaskResponse,
    TaskUpdateRequest,
    TaskWriteResponse,
)
from taskbuddy.tasks.service import TaskWriteResult, create_task, get_task, update_task

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])

# Columns that may be cleared by sending an explicit null.
_NULLABLE_FIELDS = {"start_time", "estimated_minutes"}


def _task_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        family_id=task.family_id,
        title=task.title,
        task_tag=task.task_tag,
        difficulty=task.difficulty,
        points_value=task.points_value,
        created_at=task.created_at,
        updated_at=task.updated_at,
        assignments=[
            AssignmentResponse(
                id=a.id,
                child_id=a.child_id,
                instance_date=a.instance_date,
                start_time=a.start_time,
                estimated_minutes=a.estimated_minutes,
                status=a.status,
            )
            for a in task.assignments
        ],
    )


def _write_response(result: TaskWriteResult) -> TaskWriteResponse:
    return TaskWriteResponse(
        persisted=result.persisted,
        task=_task_response(result.task) if result.task is not None else None,
        warnings=[OverlapWarningResponse(**vars(w)) for w in result.warnings],
    )


@router.post("", response_model=TaskWriteResponse)
async def create(
    body: TaskCreateRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
) -> TaskWriteResponse:
    """Create a task. Overlaps are returned for review unless ``proceed`` is set."""
    result = await create_task(
        db,
        family_id=body.family_id,
        title=body.title,
        task_tag=body.task_tag.value,
        difficulty=body.difficulty.value,
        points_value=body.points_value,
        instance_date=body.instance_date,
        start_time=body.start_time,
        estimated_minutes=body.estimated_minutes,
        child_ids=body.child_ids,
        proceed=body.proceed,
    )
    if result.persisted:
        response.status_code = status.HTTP_201_CREATED
    return _write_response(result)


@router.get("/{task_id}", response_model=TaskResponse)
async def read(task_id: uuid.UUID, db: AsyncSession = Depends(get_session)) -> TaskResponse:
    return _task_response(await get_task(db, task_id))


@router.put("/{task_id}", response_model=TaskWriteResponse)
async def update(
    task_id: uuid.UUID,
    body: TaskUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> TaskWriteResponse:
    changes = body.model_dump(exclude_unset=True, exclude={"proceed"})
    changes = {k: v for k, v in changes.items() if v is not None or k in _NULLABLE_FIELDS}
    for key in ("task_tag", "difficulty"):
        if key in changes:
            changes[key] = changes[key].value
    result = await update_task(db, task_id, changes, proceed=body.proceed)
    return _write_response(result)
