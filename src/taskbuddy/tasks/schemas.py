"""Pydantic models for task endpoints."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import AwareDatetime, BaseModel, Field

from taskbuddy.db.models import TaskDifficulty, TaskTag


class TaskCreateRequest(BaseModel):
    family_id: uuid.UUID
    title: str = Field(min_length=1, max_length=200)
    task_tag: TaskTag = TaskTag.PRIMARY
    difficulty: TaskDifficulty = TaskDifficulty.MEDIUM
    points_value: int = Field(ge=0, le=10_000)
    instance_date: date
    start_time: AwareDatetime | None = None
    estimated_minutes: int | None = Field(default=None, ge=1, le=24 * 60)
    child_ids: list[uuid.UUID] = Field(min_length=1)
    proceed: bool = False


class TaskUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    task_tag: TaskTag | None = None
    difficulty: TaskDifficulty | None = None
    points_value: int | None = Field(default=None, ge=0, le=10_000)
    instance_date: date | None = None
    start_time: AwareDatetime | None = None
    estimated_minutes: int | None = Field(default=None, ge=1, le=24 * 60)
    proceed: bool = False


class AssignmentResponse(BaseModel):
    id: uuid.UUID
    child_id: uuid.UUID
    instance_date: date
    start_time: datetime | None = None
    estimated_minutes: int | None = None
    status: str


class TaskResponse(BaseModel):
    id: uuid.UUID
    family_id: uuid.UUID
    title: str
    task_tag: str
    difficulty: str
    points_value: int
    created_at: datetime
    updated_at: datetime
    assignments: list[AssignmentResponse] = []


class OverlapWarningResponse(BaseModel):
    assignment_id: uuid.UUID | None = None
    task_id: uuid.UUID | None = None
    task_title: str | None = None
    start_time: datetime
    end_time: datetime
    child_id: uuid.UUID
    child_first_name: str | None = None
    candidate_assignment_id: uuid.UUID | None = None
    candidate_start_time: datetime
    candidate_end_time: datetime


class TaskWriteResponse(BaseModel):
    persisted: bool
    task: TaskResponse | None = None
    warnings: list[OverlapWarningResponse] = []


class CapacityEntry(BaseModel):
    task_tag: str
    used: int
    limit: int
    remaining: int


class ChildCapacityResponse(BaseModel):
    child_id: uuid.UUID
    primary: CapacityEntry
    secondary: CapacityEntry
