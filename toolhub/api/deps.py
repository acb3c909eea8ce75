"""
Request-scoped dependencies and helpers shared by the route modules.
Services are built once in the app lifespan and read from `app.state`.
"""

import asyncio
import hmac
import logging
from typing import AsyncGenerator, Awaitable, TypeVar

from fastapi import Depends, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.cache.cache_layer import CacheLayer
from toolhub.config.settings import Settings
from toolhub.executors.router import ExecutorRouter
from toolhub.executors.verification import ExecutorVerifier
from toolhub.health.scheduler import HealthCheckScheduler
from toolhub.mcp.gateway import MCPGateway
from toolhub.registry.sync import PackageSyncService

logger = logging.getLogger(__name__)

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 0.25


class ClientDisconnected(Exception):
    """The caller went away while an executor call was in flight."""


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency — yields an async DB session per request."""
    factory = request.app.state.session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_router(request: Request) -> ExecutorRouter:
    return request.app.state.router


def get_verifier(request: Request) -> ExecutorVerifier:
    return request.app.state.verifier


def get_sync_service(request: Request) -> PackageSyncService:
    return request.app.state.sync_service


def get_scheduler(request: Request) -> HealthCheckScheduler:
    return request.app.state.scheduler


def get_gateway(request: Request) -> MCPGateway:
    return request.app.state.gateway


def get_cache(request: Request) -> CacheLayer:
    return request.app.state.cache


def require_cron_secret(request: Request, app_settings: Settings = Depends(get_settings)) -> None:
    """Cron endpoints accept only `Authorization: Bearer <CRON_SECRET>` when a secret is set."""
    if not app_settings.cron_secret:
        return
    header = request.headers.get("authorization", "")
    expected = f"Bearer {app_settings.cron_secret}"
    if not hmac.compare_digest(header.encode(), expected.encode()):
        raise HTTPException(401, "Unauthorized")


async def run_until_disconnected(request: Request, awaitable: Awaitable[T]) -> T:
    """
    Await `awaitable` while watching the client connection. If the client
    disconnects first, the task is cancelled (aborting any in-flight executor
    request) and ClientDisconnected is raised.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info(f"[API] Client disconnected from {request.url.path}; cancelling executor call")
                task.cancel()
                raise ClientDisconnected()
    finally:
        if not task.done():
            task.cancel()


def client_closed_response() -> Response:
    """Nobody is listening; 499 only shows up in access logs."""
    return Response(status_code=499)
