"""Schedule conflict and capacity checks for task assignments.

Overlap is advisory: it yields warnings the parent can dismiss. Capacity
(active assignments per task tag) is a hard limit enforced on creation.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.children.service import get_child, get_family_settings
from taskbuddy.db.models import (
    ACTIVE_ASSIGNMENT_STATUSES,
    ChildProgress,
    FamilySettings,
    Task,
    TaskAssignment,
    TaskTag,
)
from taskbuddy.errors import CapacityExceeded

DEFAULT_ESTIMATED_MINUTES = 60


@dataclass(frozen=True)
class AssignmentSlot:
    """A (possibly not yet persisted) assignment placed on a child's day."""

    child_id: uuid.UUID
    instance_date: date
    start_time: datetime | None = None
    estimated_minutes: int | None = None
    assignment_id: uuid.UUID | None = None
    task_id: uuid.UUID | None = None
    task_title: str | None = None
    child_first_name: str | None = None

    @property
    def is_timed(self) -> bool:
        return self.start_time is not None

    @property
    def end_time(self) -> datetime | None:
        if self.start_time is None:
            return None
        return self.start_time + timedelta(minutes=self.estimated_minutes or DEFAULT_ESTIMATED_MINUTES)

    @classmethod
    def from_assignment(cls, assignment: TaskAssignment, child_first_name: str | None = None) -> AssignmentSlot:
        return cls(
            child_id=assignment.child_id,
            instance_date=assignment.instance_date,
            start_time=assignment.start_time,
            estimated_minutes=assignment.estimated_minutes,
            assignment_id=assignment.id,
            task_id=assignment.task_id,
            task_title=assignment.task.title if assignment.task else None,
            child_first_name=child_first_name,
        )


@dataclass(frozen=True)
class OverlapWarning:
    assignment_id: uuid.UUID | None
    task_id: uuid.UUID | None
    task_title: str | None
    start_time: datetime
    end_time: datetime
    child_id: uuid.UUID
    child_first_name: str | None
    candidate_assignment_id: uuid.UUID | None
    candidate_start_time: datetime
    candidate_end_time: datetime


@dataclass(frozen=True)
class ChildCapacity:
    task_tag: str
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


def check_overlap(
    child_id: uuid.UUID,
    candidate: AssignmentSlot,
    existing: Iterable[AssignmentSlot],
) -> list[OverlapWarning]:
    """Warnings for every existing slot whose time window intersects the candidate's.

    Only the same child and the same instance date are compared. Untimed
    slots never conflict. Windows are half-open, so back-to-back tasks
    (09:00-09:30 then 09:30-10:00) do not overlap.
    """
    if not candidate.is_timed:
        return []
    cand_start = candidate.start_time
    cand_end = candidate.end_time

    warnings = []
    for other in existing:
        if other.child_id != child_id or other.instance_date != candidate.instance_date:
            continue
        if not other.is_timed:
            continue
        if candidate.assignment_id is not None and other.assignment_id == candidate.assignment_id:
            continue
        if cand_start < other.end_time and cand_end > other.start_time:
            warnings.append(OverlapWarning(
                assignment_id=other.assignment_id,
                task_id=other.task_id,
                task_title=other.task_title,
                start_time=other.start_time,
                end_time=other.end_time,
                child_id=other.child_id,
                child_first_name=other.child_first_name or candidate.child_first_name,
                candidate_assignment_id=candidate.assignment_id,
                candidate_start_time=cand_start,
                candidate_end_time=cand_end,
            ))
    return warnings


def capacity_limit(settings: FamilySettings, task_tag: str) -> int:
    if task_tag == TaskTag.PRIMARY.value:
        return settings.max_active_primary
    return settings.max_active_secondary


class TaskScheduler:
    """Database-backed overlap and capacity checks, bound to one session."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_overlaps(
        self,
        candidate: AssignmentSlot,
        exclude_task_id: uuid.UUID | None = None,
    ) -> list[OverlapWarning]:
        """Check a candidate against the child's active assignments on the same date."""
        if not candidate.is_timed:
            return []
        stmt = select(TaskAssignment).where(
            TaskAssignment.child_id == candidate.child_id,
            TaskAssignment.instance_date == candidate.instance_date,
            TaskAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
            TaskAssignment.start_time.is_not(None),
        )
        if exclude_task_id is not None:
            stmt = stmt.where(TaskAssignment.task_id != exclude_task_id)
        result = await self.db.execute(stmt)

        first_name = candidate.child_first_name
        if first_name is None:
            child = await self.db.get(ChildProgress, candidate.child_id)
            first_name = child.first_name if child else None
        existing = [AssignmentSlot.from_assignment(a, first_name) for a in result.scalars().all()]
        return check_overlap(candidate.child_id, candidate, existing)

    async def _active_count(self, child_id: uuid.UUID, task_tag: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(TaskAssignment)
            .join(Task, TaskAssignment.task_id == Task.id)
            .where(
                TaskAssignment.child_id == child_id,
                TaskAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
                Task.task_tag == task_tag,
            )
        )
        return result.scalar_one()

    async def check_capacity(self, child_id: uuid.UUID, task_tag: str) -> ChildCapacity:
        child = await get_child(self.db, child_id)
        settings = await get_family_settings(self.db, child.family_id)
        used = await self._active_count(child_id, task_tag)
        return ChildCapacity(task_tag=task_tag, used=used, limit=capacity_limit(settings, task_tag))

    async def ensure_capacity(self, child_id: uuid.UUID, task_tag: str) -> ChildCapacity:
        """Raise ``CapacityExceeded`` if one more ``task_tag`` assignment would exceed the limit."""
        capacity = await self.check_capacity(child_id, task_tag)
        if capacity.remaining <= 0:
            child = await get_child(self.db, child_id)
            raise CapacityExceeded(child.first_name, task_tag, capacity.limit)
        return capacity

    async def get_child_capacity(self, child_id: uuid.UUID) -> dict[str, ChildCapacity]:
        return {tag.value: await self.check_capacity(child_id, tag.value) for tag in TaskTag}
