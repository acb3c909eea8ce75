"""
Toolhub — Registry API Routes
Package sync, schema re-extraction, on-demand and scheduled health checks,
quality rescoring, and health statistics.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.api.deps import (
    get_cache, get_scheduler, get_session, get_sync_service, require_cron_secret,
)
from toolhub.cache.cache_layer import CacheLayer
from toolhub.db.health_repository import HealthCheckRepository
from toolhub.db.package_repository import ToolRepository
from toolhub.health.scheduler import HealthCheckScheduler
from toolhub.registry.metadata import SyncRequest
from toolhub.registry.sync import PackageSyncService

logger = logging.getLogger(__name__)

router = APIRouter()


class ExtractSchemaRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package_name: str = Field(alias="packageName", min_length=1)
    export_name: str = Field(alias="exportName", min_length=1)


# ══════════════════════════════════════════════════════════════════
# SYNC & SCHEMA
# ══════════════════════════════════════════════════════════════════

@router.post("/sync/package", tags=["Registry"], dependencies=[Depends(require_cron_secret)])
async def sync_package(
    req: SyncRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    sync_service: PackageSyncService = Depends(get_sync_service),
    scheduler: HealthCheckScheduler = Depends(get_scheduler),
):
    """Upsert a package and its tools from discovery metadata (idempotent).

    Every synced tool gets a health check once the response is sent.
    """
    report = await sync_service.sync_package(db, req.package, req.discovery_method)
    await db.commit()
    background_tasks.add_task(
        scheduler.check_tools, [t.tool_id for t in report.tools], trigger_source="sync",
    )
    rescore = await scheduler.rescore()
    return {**report.model_dump(mode="json"), "needs_review": report.needs_review,
            "rescore": rescore.model_dump()}


@router.post("/tools/extract-schema", tags=["Tools"])
async def extract_schema(
    req: ExtractSchemaRequest,
    db: AsyncSession = Depends(get_session),
    sync_service: PackageSyncService = Depends(get_sync_service),
    cache: CacheLayer = Depends(get_cache),
):
    """Re-extract one registered tool's schema from the default sandbox."""
    tool, result = await sync_service.refresh_schema(db, req.package_name, req.export_name)
    if result.success:
        await cache.invalidate_namespace("collections")
    return {
        "success": result.success,
        "tool_id": tool.id,
        "schema_source": tool.schema_source,
        "input_schema": tool.input_schema,
        "parameters": tool.parameters,
        "error": result.error,
        "error_type": result.error_type,
    }


# ══════════════════════════════════════════════════════════════════
# HEALTH
# ══════════════════════════════════════════════════════════════════

@router.post("/tools/{tool_id}/health-check", tags=["Health"])
async def check_tool_health(
    tool_id: str,
    scheduler: HealthCheckScheduler = Depends(get_scheduler),
):
    """Run an import + execution check for one tool now."""
    summary = await scheduler.check_tool(tool_id, trigger_source="manual")
    await scheduler.rescore()
    return summary.model_dump(mode="json")


@router.get("/stats/health", tags=["Health"])
async def health_stats(
    db: AsyncSession = Depends(get_session),
    scheduler: HealthCheckScheduler = Depends(get_scheduler),
    cache: CacheLayer = Depends(get_cache),
):
    """Health distribution across the registry, recent check volume, and broken tools."""
    cached = await cache.get("health_stats", "summary")
    if cached is not None:
        return cached

    tools = ToolRepository(db)
    stats = await tools.health_distribution()
    stats["checks"] = await HealthCheckRepository(db).counts_since(datetime.utcnow())
    stats["scheduler"] = scheduler.stats()
    stats["broken_tools"] = [
        {
            "id": t.id,
            "package": t.package.name,
            "export_name": t.export_name,
            "import_health": t.import_health,
            "execution_health": t.execution_health,
            "error": t.health_check_error,
            "last_health_check": t.last_health_check.isoformat() if t.last_health_check else None,
        }
        for t in await tools.broken(limit=20)
    ]
    await cache.set("health_stats", "summary", stats)
    return stats


# ══════════════════════════════════════════════════════════════════
# CRON
# ══════════════════════════════════════════════════════════════════

@router.post("/cron/health-sweep", tags=["Cron"], dependencies=[Depends(require_cron_secret)])
async def cron_health_sweep(scheduler: HealthCheckScheduler = Depends(get_scheduler)):
    """Sweep every tool. Failures are recorded per tool; the next attempt is the next trigger."""
    report = await scheduler.run_sweep(datetime.utcnow(), trigger_source="cron")
    return report.model_dump(mode="json")


@router.post("/cron/rescore", tags=["Cron"], dependencies=[Depends(require_cron_secret)])
async def cron_rescore(scheduler: HealthCheckScheduler = Depends(get_scheduler)):
    report = await scheduler.rescore()
    return report.model_dump()
