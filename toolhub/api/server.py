"""
Toolhub — FastAPI Server
Tool registry API: executor verification, routed execution, package sync,
health sweeps, quality scoring, and the MCP gateway for public collections.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from toolhub import __version__
from toolhub.api import routes_executors, routes_mcp, routes_registry
from toolhub.cache.cache_layer import CacheLayer
from toolhub.config.settings import Settings, settings as default_settings
from toolhub.db import models  # noqa: F401  (registers tables on Base.metadata)
from toolhub.db.base import Base
from toolhub.db.engine import dispose_engine, get_engine
from toolhub.errors import NotFoundError, RegistryError, RegistryValidationError
from toolhub.executors.client import ExecutorClient
from toolhub.executors.router import ExecutorRouter
from toolhub.executors.verification import ExecutorVerifier
from toolhub.health.checker import ToolHealthChecker
from toolhub.health.scheduler import HealthCheckScheduler
from toolhub.mcp.gateway import MCPGateway
from toolhub.registry.sync import PackageSyncService
from toolhub.schema.extraction import SchemaExtractionService

logger = logging.getLogger(__name__)


_openapi_tags = [
    {"name": "System", "description": "Liveness"},
    {"name": "Executors", "description": "Custom executor verification handshake"},
    {"name": "Tools", "description": "Routed tool execution and schema extraction"},
    {"name": "Registry", "description": "Package and tool sync from discovery metadata"},
    {"name": "Health", "description": "Tool health checks and statistics"},
    {"name": "Cron", "description": "Scheduled sweep and rescoring triggers"},
    {"name": "MCP", "description": "JSON-RPC gateway for public collections (http, sse)"},
]


def create_app(
    app_settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    executor_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application. `engine` and `executor_transport` let tests point the
    app at a throwaway database and a fake executor.
    """
    cfg = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[TOOLHUB] Starting ({cfg.environment})")
        db_engine = engine or get_engine()
        async with db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)

        client = ExecutorClient(
            default_url=cfg.executor_url,
            default_api_key=cfg.executor_api_key,
            health_timeout=cfg.health_probe_timeout_seconds,
            introspect_timeout=cfg.extraction_timeout_seconds,
            list_exports_timeout=cfg.list_exports_timeout_seconds,
            execute_timeout=cfg.interactive_timeout_seconds,
            transport=executor_transport,
        )
        cache = CacheLayer(default_ttl=cfg.cache_ttl_seconds)
        router = ExecutorRouter(client, interactive_timeout=cfg.interactive_timeout_seconds)
        scheduler = HealthCheckScheduler(
            session_factory,
            ToolHealthChecker(
                client, timeout=cfg.health_check_timeout_seconds,
                error_max_length=cfg.health_error_max_length,
            ),
            concurrency=cfg.health_sweep_concurrency,
            cache=cache,
            popularity_ceiling=cfg.popularity_ceiling,
        )

        app.state.settings = cfg
        app.state.session_factory = session_factory
        app.state.client = client
        app.state.cache = cache
        app.state.router = router
        app.state.verifier = ExecutorVerifier(
            client,
            health_timeout=cfg.health_probe_timeout_seconds,
            execution_timeout=cfg.verify_execution_timeout_seconds,
            require_https=cfg.is_production,
        )
        app.state.sync_service = PackageSyncService(SchemaExtractionService(client))
        app.state.scheduler = scheduler
        app.state.gateway = MCPGateway(
            session_factory, router, cache,
            db_timeout=cfg.mcp_db_timeout_seconds,
            server_version=cfg.mcp_server_version,
            protocol_version=cfg.mcp_protocol_version,
        )

        if cfg.health_sweep_enabled:
            scheduler.start(cfg.health_sweep_interval_seconds)
        logger.info(f"[TOOLHUB] Ready (executor={cfg.executor_url}, sweep={'on' if cfg.health_sweep_enabled else 'off'})")
        yield
        logger.info("[TOOLHUB] Shutting down...")
        await scheduler.stop()
        await client.close()
        if engine is None:
            await dispose_engine()
        else:
            await engine.dispose()

    app = FastAPI(
        title="Toolhub",
        description="Registry, health checking, and execution routing for agent tools.",
        version=__version__,
        lifespan=lifespan,
        openapi_tags=_openapi_tags,
    )

    # ── CORS: configurable allowed origins ──────────────────────────────
    cors_origins_raw = os.environ.get("CORS_ALLOWED_ORIGINS", "*")
    cors_origins = ["*"] if cors_origins_raw.strip() == "*" else [
        o.strip() for o in cors_origins_raw.split(",") if o.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Domain errors → HTTP ─────────────────────────────────────────────
    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        if isinstance(exc, NotFoundError):
            status = 404
        elif isinstance(exc, RegistryValidationError):
            status = 400
        else:
            status = 500
        return JSONResponse(status_code=status, content={"error": str(exc), "kind": exc.kind.value})

    @app.get("/health", tags=["System"])
    async def health():
        return {"status": "ok", "version": __version__, "environment": cfg.environment}

    app.include_router(routes_executors.router)
    app.include_router(routes_registry.router)
    app.include_router(routes_mcp.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
