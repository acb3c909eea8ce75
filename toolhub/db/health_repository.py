"""
HealthCheckRepository — append-only history of tool health checks.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.db.models import HealthCheckModel

logger = logging.getLogger(__name__)


class HealthCheckRepository:

    def __init__(self, session: AsyncSession):
        self._session = session

    async def record(self, **fields: Any) -> HealthCheckModel:
        row = HealthCheckModel(**fields)
        self._session.add(row)
        await self._session.flush()
        return row

    async def recent(self, tool_id: Optional[str] = None, limit: int = 20) -> List[HealthCheckModel]:
        stmt = select(HealthCheckModel).order_by(HealthCheckModel.created_at.desc()).limit(limit)
        if tool_id:
            stmt = stmt.where(HealthCheckModel.tool_id == tool_id)
        return list((await self._session.execute(stmt)).scalars().all())

    async def counts_since(self, now: datetime) -> Dict[str, int]:
        """Number of checks run in the last 24h / 7d and overall."""
        async def _count(since: Optional[datetime]) -> int:
            stmt = select(func.count(HealthCheckModel.id))
            if since is not None:
                stmt = stmt.where(HealthCheckModel.created_at >= since)
            return (await self._session.execute(stmt)).scalar_one()

        return {
            "last_24h": await _count(now - timedelta(hours=24)),
            "last_7d": await _count(now - timedelta(days=7)),
            "total": await _count(None),
        }
