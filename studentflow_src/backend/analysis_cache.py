import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db import AnalysisCacheEntry
from errors import PersistenceError

logger = logging.getLogger(__name__)

HEALTH_SCORE = "health_score"
DEFAULT_TTL = timedelta(hours=1)


async def get_cached_analysis(session: AsyncSession, project_id: str, analysis_type: str,
                              now: datetime) -> Optional[dict]:
    """Payload of the newest non-expired entry for (project, type), if any.

    Expired rows are skipped, never deleted.
    """
    res = await session.execute(
        select(AnalysisCacheEntry)
        .where(
            AnalysisCacheEntry.project_id == project_id,
            AnalysisCacheEntry.analysis_type == analysis_type,
            AnalysisCacheEntry.valid_until >= now,
        )
        .order_by(desc(AnalysisCacheEntry.created_at), desc(AnalysisCacheEntry.valid_until))
        .limit(1)
    )
    entry = res.scalar_one_or_none()
    return entry.data if entry and entry.data else None


async def store_analysis(session: AsyncSession, project_id: str, analysis_type: str, data: dict,
                         now: datetime, ttl: timedelta = DEFAULT_TTL) -> AnalysisCacheEntry:
    """Insert a new cache row valid for ``ttl``. Older rows are superseded, not updated."""
    entry = AnalysisCacheEntry(
        project_id=project_id,
        analysis_type=analysis_type,
        data=data,
        valid_until=now + ttl,
        created_at=now,
    )
    session.add(entry)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError(f"Could not cache {analysis_type} for project {project_id}: {e}") from e
    return entry
