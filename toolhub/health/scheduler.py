"""
Health Check Scheduler — recurring sweep over every registered tool.

`run_sweep(now)` is independent of its trigger: the cron endpoint, the built-in
asyncio loop, and tests all call it the same way. Each tool is checked in its
own DB session under a semaphore, and a failure in one tool's check is
recorded on that tool alone.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import async_sessionmaker

from toolhub.cache.cache_layer import CacheLayer
from toolhub.db.health_repository import HealthCheckRepository
from toolhub.db.models import HealthStatus
from toolhub.db.package_repository import ToolRepository
from toolhub.errors import NotFoundError
from toolhub.executors.models import ToolRef
from toolhub.health.checker import ToolHealthChecker, ToolHealthResult, truncate_error
from toolhub.scoring.quality import RescoreReport, rescore_all

logger = logging.getLogger(__name__)


class ToolCheckSummary(BaseModel):
    tool_id: str
    import_health: HealthStatus
    execution_health: HealthStatus
    overall_status: HealthStatus
    error: Optional[str] = None
    check_failed: bool = False  # the check raised instead of returning a result


class SweepReport(BaseModel):
    started_at: datetime
    duration_ms: float = 0.0
    total: int = 0
    healthy: int = 0
    broken: int = 0
    unknown: int = 0
    failed_checks: int = 0  # checks that raised and were recorded BROKEN
    results: List[ToolCheckSummary] = Field(default_factory=list)
    rescore: Optional[RescoreReport] = None


class HealthCheckScheduler:
    """
    Usage:
        scheduler = HealthCheckScheduler(session_factory, checker, concurrency=5)
        report = await scheduler.run_sweep(datetime.utcnow())

        scheduler.start(interval_seconds=3600)   # optional background loop
        await scheduler.stop()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        checker: ToolHealthChecker,
        concurrency: int = 5,
        cache: Optional[CacheLayer] = None,
        popularity_ceiling: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._checker = checker
        self.concurrency = max(1, concurrency)
        self._cache = cache
        self.popularity_ceiling = popularity_ceiling
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[SweepReport] = None

    # ── Single tool ───────────────────────────────────────────────

    async def check_tool(
        self, tool_id: str, trigger_source: str = "manual", now: Optional[datetime] = None,
    ) -> ToolCheckSummary:
        """Check one tool, persist its health and a history row. Raises NotFoundError."""
        now = now or datetime.utcnow()
        async with self._session_factory() as session:
            tool = await ToolRepository(session).get(tool_id)
            if tool is None:
                raise NotFoundError(f"Tool not found: {tool_id}")
            package = tool.package
            ref = ToolRef(package_name=package.name, export_name=tool.export_name, version=package.version)
            input_schema, parameters, env = tool.input_schema, tool.parameters, dict(package.env or {})

        result = await self._checker.check(tool_id, ref, input_schema, parameters, env)
        await self._persist(result, trigger_source, now)

        logger.info(
            f"[HEALTH] {ref}: import={result.import_check.status.value} "
            f"execution={result.execution_check.status.value}"
        )
        return ToolCheckSummary(
            tool_id=tool_id,
            import_health=result.import_check.status,
            execution_health=result.execution_check.status,
            overall_status=result.overall_status,
            error=result.error,
        )

    async def _persist(self, result: ToolHealthResult, trigger_source: str, now: datetime) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await ToolRepository(session).update_health(
                    result.tool_id,
                    result.import_check.status,
                    result.execution_check.status,
                    checked_at=now,
                    error=result.error,
                )
                await HealthCheckRepository(session).record(
                    tool_id=result.tool_id,
                    trigger_source=trigger_source,
                    import_status=result.import_check.status.value,
                    import_error=result.import_check.error,
                    import_time_ms=result.import_check.time_ms,
                    execution_status=result.execution_check.status.value,
                    execution_error=result.execution_check.error,
                    execution_time_ms=result.execution_check.time_ms,
                    test_parameters=result.test_parameters,
                    overall_status=result.overall_status.value,
                    created_at=now,
                )

    async def _record_failure(self, tool_id: str, error: Exception, now: datetime) -> ToolCheckSummary:
        """A check that raised: mark the tool BROKEN with the exception message."""
        message = truncate_error(str(error) or type(error).__name__, self._checker.error_max_length)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await ToolRepository(session).update_health(
                        tool_id, HealthStatus.BROKEN, HealthStatus.UNKNOWN, checked_at=now, error=message,
                    )
        except Exception as e:
            logger.error(f"[HEALTH] Could not record failure for {tool_id}: {e}")
        return ToolCheckSummary(
            tool_id=tool_id,
            import_health=HealthStatus.BROKEN,
            execution_health=HealthStatus.UNKNOWN,
            overall_status=HealthStatus.BROKEN,
            error=message,
            check_failed=True,
        )

    # ── Sweep ─────────────────────────────────────────────────────

    async def _check_many(self, tool_ids: List[str], trigger_source: str, now: datetime) -> List[ToolCheckSummary]:
        """Check each tool under the semaphore; one tool raising never affects another."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _run_with_semaphore(tool_id: str) -> ToolCheckSummary:
            async with semaphore:
                try:
                    return await self.check_tool(tool_id, trigger_source, now)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"[HEALTH] Check for {tool_id} raised: {e}")
                    return await self._record_failure(tool_id, e, now)

        return list(await asyncio.gather(*(_run_with_semaphore(t) for t in tool_ids)))

    async def check_tools(
        self, tool_ids: List[str], trigger_source: str = "sync", now: Optional[datetime] = None,
    ) -> List[ToolCheckSummary]:
        """Check a batch of tools (e.g. the ones a sync just wrote), then rescore."""
        if not tool_ids:
            return []
        results = await self._check_many(tool_ids, trigger_source, now or datetime.utcnow())
        await self.rescore()
        return results

    async def run_sweep(self, now: Optional[datetime] = None, trigger_source: str = "scheduled") -> SweepReport:
        now = now or datetime.utcnow()
        start = time.monotonic()

        async with self._session_factory() as session:
            tool_ids = await ToolRepository(session).list_ids()

        logger.info(f"[HEALTH] Sweep starting for {len(tool_ids)} tools (concurrency={self.concurrency})")
        results = await self._check_many(tool_ids, trigger_source, now)

        report = SweepReport(
            started_at=now,
            total=len(tool_ids),
            healthy=sum(1 for r in results if r.overall_status == HealthStatus.HEALTHY),
            broken=sum(1 for r in results if r.overall_status == HealthStatus.BROKEN),
            unknown=sum(1 for r in results if r.overall_status == HealthStatus.UNKNOWN),
            failed_checks=sum(1 for r in results if r.check_failed),
            results=results,
        )
        report.rescore = await self.rescore()
        report.duration_ms = round((time.monotonic() - start) * 1000, 1)
        self.last_report = report

        logger.info(
            f"[HEALTH] Sweep complete: {report.healthy} healthy, {report.broken} broken, "
            f"{report.unknown} unknown in {report.duration_ms}ms"
        )
        return report

    async def rescore(self) -> RescoreReport:
        """Re-derive every quality score and drop cached reads that embed them."""
        async with self._session_factory() as session:
            async with session.begin():
                report = await rescore_all(session, self.popularity_ceiling)
        if self._cache is not None:
            await self._cache.invalidate_namespace("collections")
            await self._cache.invalidate_namespace("health_stats")
        return report

    # ── Background loop ───────────────────────────────────────────

    async def _loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.run_sweep(datetime.utcnow())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Next attempt is the next interval, never an immediate retry
                logger.error(f"[HEALTH] Sweep failed: {e}")

    def start(self, interval_seconds: float) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(interval_seconds))
            logger.info(f"[HEALTH] Background sweep every {interval_seconds:g}s")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def stats(self) -> Dict[str, object]:
        last = self.last_report
        return {
            "running": self.running,
            "concurrency": self.concurrency,
            "last_sweep_at": last.started_at.isoformat() if last else None,
            "last_sweep_total": last.total if last else 0,
        }
