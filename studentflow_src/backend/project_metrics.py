import math
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db import Project, Task, TaskStatus
from ai_schemas import ProjectMetrics

# Placeholder until tasks record a completion timestamp
AVG_COMPLETION_TIME_DAYS = 3


def days_until(deadline: datetime, now: datetime) -> int:
    """Whole days until ``deadline``, rounded up (negative once it has passed)."""
    return math.ceil((deadline - now).total_seconds() / 86400)


def nearest_deadline(due_dates: Iterable[Optional[datetime]], now: datetime) -> Optional[datetime]:
    """Earliest due date still in the future, or None."""
    upcoming = [d for d in due_dates if d and d > now]
    return min(upcoming) if upcoming else None


def compute_metrics(tasks: List[Task], now: datetime, deadline: Optional[datetime] = None,
                    avg_completion_time: float = AVG_COMPLETION_TIME_DAYS) -> ProjectMetrics:
    """
    Count task statistics for one project or a whole portfolio.

    Args:
        tasks: task rows (anything with status, due_date and updated_at)
        now: wall-clock reference for overdue / this-week checks
        deadline: due date used for days_until_deadline, if any

    "Completed this week" keys off updated_at, so editing a task that is already
    done counts it again.
    """
    week_ago = now - timedelta(days=7)

    completed = [t for t in tasks if t.status == TaskStatus.done]
    in_progress = [t for t in tasks if t.status == TaskStatus.in_progress]
    overdue = [t for t in tasks if t.due_date and t.due_date < now and t.status != TaskStatus.done]
    completed_this_week = [t for t in completed if t.updated_at and t.updated_at >= week_ago]

    return ProjectMetrics(
        total_tasks=len(tasks),
        completed_tasks=len(completed),
        in_progress_tasks=len(in_progress),
        overdue_tasks=len(overdue),
        days_until_deadline=days_until(deadline, now) if deadline else None,
        tasks_completed_this_week=len(completed_this_week),
        avg_completion_time=avg_completion_time,
    )


async def get_project_metrics(session: AsyncSession, project_id: str,
                              now_fn: Callable[[], datetime] = datetime.now) -> ProjectMetrics:
    """Metrics for a single project. An unknown project yields empty counts."""
    project = await session.get(Project, project_id)
    task_res = await session.execute(select(Task).where(Task.project_id == project_id))
    tasks = task_res.scalars().all()

    now = now_fn()
    return compute_metrics(tasks, now, project.due_date if project else None)


async def get_user_projects(session: AsyncSession, user_id: str) -> List[Project]:
    """Every project owned by the user, archived and soft-deleted ones included."""
    res = await session.execute(select(Project).where(Project.owner_id == user_id))
    return list(res.scalars().all())


async def get_global_metrics(session: AsyncSession, user_id: str,
                             now_fn: Callable[[], datetime] = datetime.now) -> ProjectMetrics:
    """Metrics aggregated over all of a user's projects."""
    projects = await get_user_projects(session, user_id)
    if not projects:
        return ProjectMetrics(avg_completion_time=0)

    task_res = await session.execute(select(Task).where(Task.project_id.in_([p.id for p in projects])))
    tasks = task_res.scalars().all()

    now = now_fn()
    return compute_metrics(tasks, now, nearest_deadline([p.due_date for p in projects], now))
