"""Task create/update with capacity enforcement and overlap review."""

from __future__ import annotations

import logging
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.children.service import get_child
from taskbuddy.db.models import ACTIVE_ASSIGNMENT_STATUSES, AssignmentStatus, Task, TaskAssignment
from taskbuddy.errors import ChildNotFound, TaskNotFound
from taskbuddy.ledger.locks import KeyedLocks, get_lock_registry
from taskbuddy.tasks.scheduler import AssignmentSlot, OverlapWarning, TaskScheduler

logger = logging.getLogger(__name__)

_TASK_FIELDS = ("title", "task_tag", "difficulty", "points_value")
_SCHEDULE_FIELDS = ("instance_date", "start_time", "estimated_minutes")


@dataclass
class TaskWriteResult:
    task: Task | None
    warnings: list[OverlapWarning] = field(default_factory=list)

    @property
    def persisted(self) -> bool:
        return self.task is not None


async def _hold_child_locks(stack: AsyncExitStack, locks: KeyedLocks, child_ids: list[uuid.UUID]) -> None:
    # Sorted so two requests touching the same children cannot deadlock.
    for child_id in sorted(set(child_ids), key=str):
        await stack.enter_async_context(locks.child(child_id))


async def create_task(
    db: AsyncSession,
    *,
    family_id: uuid.UUID,
    title: str,
    task_tag: str,
    difficulty: str,
    points_value: int,
    instance_date: date,
    child_ids: list[uuid.UUID],
    start_time: datetime | None = None,
    estimated_minutes: int | None = None,
    proceed: bool = False,
    locks: KeyedLocks | None = None,
) -> TaskWriteResult:
    """Create a task assigned to each child.

    Capacity is a hard limit and raises. Overlaps come back as warnings;
    unless ``proceed`` is set, a task with warnings is not saved.
    """
    scheduler = TaskScheduler(db)
    child_ids = list(dict.fromkeys(child_ids))

    async with AsyncExitStack() as stack:
        await _hold_child_locks(stack, locks or get_lock_registry(), child_ids)

        children = {}
        for child_id in child_ids:
            child = await get_child(db, child_id)
            if child.family_id != family_id:
                raise ChildNotFound(child_id)
            await scheduler.ensure_capacity(child_id, task_tag)
            children[child_id] = child

        warnings: list[OverlapWarning] = []
        for child_id, child in children.items():
            candidate = AssignmentSlot(
                child_id=child_id,
                instance_date=instance_date,
                start_time=start_time,
                estimated_minutes=estimated_minutes,
                task_title=title,
                child_first_name=child.first_name,
            )
            warnings.extend(await scheduler.find_overlaps(candidate))

        if warnings and not proceed:
            logger.info("Task %r not saved: %d overlap warning(s) awaiting review", title, len(warnings))
            return TaskWriteResult(task=None, warnings=warnings)

        now = datetime.now(timezone.utc)
        task = Task(
            id=uuid.uuid4(),
            family_id=family_id,
            title=title,
            task_tag=task_tag,
            difficulty=difficulty,
            points_value=points_value,
            created_at=now,
            updated_at=now,
            assignments=[
                TaskAssignment(
                    id=uuid.uuid4(),
                    child_id=child_id,
                    instance_date=instance_date,
                    start_time=start_time,
                    estimated_minutes=estimated_minutes,
                    status=AssignmentStatus.PENDING.value,
                    created_at=now,
                )
                for child_id in child_ids
            ],
        )
        db.add(task)
        await db.commit()

    logger.info("Created task %s for %d child(ren)", task.id, len(child_ids))
    return TaskWriteResult(task=task, warnings=warnings)


async def get_task(db: AsyncSession, task_id: uuid.UUID) -> Task:
    task = await db.get(Task, task_id)
    if task is None:
        raise TaskNotFound(task_id)
    return task


async def update_task(
    db: AsyncSession,
    task_id: uuid.UUID,
    changes: dict[str, Any],
    *,
    proceed: bool = False,
    locks: KeyedLocks | None = None,
) -> TaskWriteResult:
    """Apply ``changes`` to a task and its active assignments.

    The task's own assignments are left out of the overlap check, and a
    tag change re-checks capacity for the new tag.
    """
    scheduler = TaskScheduler(db)
    task = await get_task(db, task_id)
    active = [a for a in task.assignments if a.status in ACTIVE_ASSIGNMENT_STATUSES]

    async with AsyncExitStack() as stack:
        await _hold_child_locks(stack, locks or get_lock_registry(), [a.child_id for a in active])

        new_tag = changes.get("task_tag")
        if new_tag is not None and new_tag != task.task_tag:
            for assignment in active:
                await scheduler.ensure_capacity(assignment.child_id, new_tag)

        warnings: list[OverlapWarning] = []
        for assignment in active:
            candidate = AssignmentSlot(
                child_id=assignment.child_id,
                instance_date=changes.get("instance_date", assignment.instance_date),
                start_time=changes.get("start_time", assignment.start_time),
                estimated_minutes=changes.get("estimated_minutes", assignment.estimated_minutes),
                assignment_id=assignment.id,
                task_id=task.id,
                task_title=changes.get("title", task.title),
            )
            warnings.extend(await scheduler.find_overlaps(candidate, exclude_task_id=task.id))

        if warnings and not proceed:
            logger.info("Task %s not updated: %d overlap warning(s) awaiting review", task_id, len(warnings))
            return TaskWriteResult(task=None, warnings=warnings)

        for name in _TASK_FIELDS:
            if name in changes and changes[name] is not None:
                setattr(task, name, changes[name])
        for assignment in active:
            for name in _SCHEDULE_FIELDS:
                if name in changes:
                    setattr(assignment, name, changes[name])
        task.updated_at = datetime.now(timezone.utc)
        await db.commit()

    logger.info("Updated task %s", task_id)
    return TaskWriteResult(task=task, warnings=warnings)
