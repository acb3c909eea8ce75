"""
PackageRepository / ToolRepository — async persistence for packages and tools.
Upserts are a single INSERT ... ON CONFLICT DO UPDATE on the natural unique key
(package name; package + export name), so repeated syncs never create duplicate
rows and two concurrent syncs of the same package resolve as last write wins.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.db.models import PackageModel, ToolModel, HealthStatus

logger = logging.getLogger(__name__)

_PACKAGE_FIELDS = (
    "version", "published_at", "description", "keywords", "repository", "homepage",
    "license", "discovery_method", "is_official", "downloads_last_month", "tier", "env",
)

_TOOL_FIELDS = (
    "description", "input_schema", "schema_source", "schema_extracted_at",
    "parameters", "returns", "ai_agent", "needs_review",
)

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _upsert_insert(session: AsyncSession, model):
    dialect = session.get_bind().dialect.name
    if dialect not in _UPSERT_INSERTS:
        raise NotImplementedError(f"Upsert is not supported on {dialect}")
    return _UPSERT_INSERTS[dialect](model)


class PackageRepository:
    """Async CRUD for packages."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_name(self, name: str) -> Optional[PackageModel]:
        result = await self._session.execute(
            select(PackageModel).where(PackageModel.name == name)
        )
        return result.scalar_one_or_none()

    async def upsert(self, name: str, **fields: Any) -> Tuple[PackageModel, bool]:
        """Insert or update by package name. Returns (row, created)."""
        values = {k: v for k, v in fields.items() if k in _PACKAGE_FIELDS}
        now = datetime.utcnow()
        new_id = f"pkg-{uuid.uuid4().hex[:8]}"

        stmt = _upsert_insert(self._session, PackageModel).values(
            id=new_id, name=name, created_at=now, updated_at=now, **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[PackageModel.name], set_={**values, "updated_at": now},
        )
        await self._session.execute(stmt)

        result = await self._session.execute(
            select(PackageModel)
            .where(PackageModel.name == name)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one()
        created = row.id == new_id
        logger.info(f"{'Created' if created else 'Updated'} package {name}@{row.version}")
        return row, created


class ToolRepository:
    """Async CRUD for tools, including the health write path."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, tool_id: str) -> Optional[ToolModel]:
        result = await self._session.execute(select(ToolModel).where(ToolModel.id == tool_id))
        return result.scalar_one_or_none()

    async def get_by_ref(self, package_name: str, export_name: str) -> Optional[ToolModel]:
        result = await self._session.execute(
            select(ToolModel)
            .join(PackageModel, ToolModel.package_id == PackageModel.id)
            .where(PackageModel.name == package_name, ToolModel.export_name == export_name)
        )
        return result.scalar_one_or_none()

    async def get_by_export(self, package_id: str, export_name: str) -> Optional[ToolModel]:
        result = await self._session.execute(
            select(ToolModel).where(
                ToolModel.package_id == package_id, ToolModel.export_name == export_name,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(self, package_id: str, export_name: str, **fields: Any) -> Tuple[ToolModel, bool]:
        """Insert or update by (package_id, export_name). Health and score are untouched on update."""
        values = {k: v for k, v in fields.items() if k in _TOOL_FIELDS}
        now = datetime.utcnow()
        new_id = f"tool-{uuid.uuid4().hex[:8]}"

        stmt = _upsert_insert(self._session, ToolModel).values(
            id=new_id, package_id=package_id, export_name=export_name,
            import_health=HealthStatus.UNKNOWN.value,
            execution_health=HealthStatus.UNKNOWN.value,
            created_at=now, updated_at=now, **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ToolModel.package_id, ToolModel.export_name],
            set_={**values, "updated_at": now},
        )
        await self._session.execute(stmt)

        result = await self._session.execute(
            select(ToolModel)
            .where(ToolModel.package_id == package_id, ToolModel.export_name == export_name)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one()
        return row, row.id == new_id

    async def list_ids(self) -> List[str]:
        result = await self._session.execute(select(ToolModel.id).order_by(ToolModel.created_at))
        return list(result.scalars().all())

    async def list_for_package(self, package_id: str) -> List[ToolModel]:
        result = await self._session.execute(
            select(ToolModel).where(ToolModel.package_id == package_id).order_by(ToolModel.export_name)
        )
        return list(result.scalars().all())

    async def update_health(
        self,
        tool_id: str,
        import_health: HealthStatus,
        execution_health: HealthStatus,
        checked_at: datetime,
        error: Optional[str] = None,
    ) -> bool:
        result = await self._session.execute(
            update(ToolModel)
            .where(ToolModel.id == tool_id)
            .values(
                import_health=import_health.value,
                execution_health=execution_health.value,
                last_health_check=checked_at,
                health_check_error=error,
            )
        )
        return result.rowcount > 0

    async def broken(self, limit: int = 50) -> List[ToolModel]:
        stmt = (
            select(ToolModel)
            .where(
                (ToolModel.import_health == HealthStatus.BROKEN.value)
                | (ToolModel.execution_health == HealthStatus.BROKEN.value)
            )
            .order_by(ToolModel.last_health_check.desc())
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def health_distribution(self) -> Dict[str, Any]:
        """Counts per import/execution status plus tools never checked."""
        total = (await self._session.execute(select(func.count(ToolModel.id)))).scalar_one()
        stats: Dict[str, Any] = {"total": total, "import": {}, "execution": {}}
        for column, key in ((ToolModel.import_health, "import"), (ToolModel.execution_health, "execution")):
            rows = (await self._session.execute(
                select(column, func.count(ToolModel.id)).group_by(column)
            )).all()
            counts = {s.value: 0 for s in HealthStatus}
            counts.update({status: n for status, n in rows})
            stats[key] = counts
        stats["never_checked"] = (await self._session.execute(
            select(func.count(ToolModel.id)).where(ToolModel.last_health_check.is_(None))
        )).scalar_one()
        stats["needs_review"] = (await self._session.execute(
            select(func.count(ToolModel.id)).where(ToolModel.needs_review.is_(True))
        )).scalar_one()
        return stats
