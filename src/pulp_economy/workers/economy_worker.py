"""Economy arq worker: window and advantage sweeps plus round processing.

Run with: arq pulp_economy.workers.economy_worker.WorkerSettings

Every job opens its own session; sweeps are idempotent, so a job that
overlaps an on-demand sweep from the API is harmless.
"""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.advantages.service import expire_all_advantages
from pulp_economy.config import get_settings
from pulp_economy.database import close_db, get_session, init_db
from pulp_economy.settlement.service import process_round_gamification
from pulp_economy.windows.service import expire_stale_windows, lock_expired_windows

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def economy_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(
        settings.database_url,
        pool_timeout=settings.db_pool_timeout_seconds,
        command_timeout=settings.db_command_timeout_seconds,
    )
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Economy worker started")


async def economy_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Economy worker shut down")


async def sweep_windows(ctx: dict) -> dict[str, list[int]]:  # type: ignore[type-arg]
    """Lock windows past their deadline, then expire stale locked windows."""
    db = await _get_db_session()
    try:
        locked = await lock_expired_windows(db, ctx.get("redis"))
        expired = await expire_stale_windows(db)
    finally:
        await db.close()
    if locked or expired:
        logger.info("Window sweep: locked=%s expired=%s", locked, expired)
    return {"locked": locked, "expired": expired}


async def sweep_advantages(ctx: dict) -> dict[str, Any]:  # type: ignore[type-arg]
    """Expire unused advantages whose time ran out."""
    db = await _get_db_session()
    try:
        summary = await expire_all_advantages(db)
    finally:
        await db.close()
    if summary["expired_count"] or summary["failed"]:
        logger.info("Advantage sweep: %s", summary)
    return summary


async def process_round(
    ctx: dict,  # type: ignore[type-arg]
    round_id: int,
    event_id: int,
    event_type: str,
    round_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Enqueued by the results producer once a round's results are stored."""
    db = await _get_db_session()
    try:
        summary = await process_round_gamification(
            db, round_id, event_id, event_type, round_meta, redis=ctx.get("redis"),
        )
    finally:
        await db.close()
    logger.info(
        "Round %d processed: %d players, %d PULPs, settlement_error=%s",
        round_id, summary["players_processed"], summary["total_pulps_awarded"],
        summary["settlement_error"],
    )
    return summary


class WorkerSettings:
    """arq worker settings for the PULP economy."""

    functions = [sweep_windows, sweep_advantages, process_round]
    cron_jobs = [
        cron(sweep_windows, second=0, run_at_startup=True),
        cron(sweep_advantages, minute=5, second=0),
    ]
    on_startup = economy_startup
    on_shutdown = economy_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = get_settings().sweep_job_timeout_seconds
    allow_abort_jobs = True
