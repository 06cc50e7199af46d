"""Reward engine arq worker: out-of-band retry of best-effort badge evaluation.

Completions enqueue ``reevaluate_badges`` when badge evaluation fails after
the critical section committed. The job re-runs evaluation with a fresh stats
snapshot; badges already held are skipped.

Import path for arq CLI: arq cvr.gamification.worker.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import Retry
from arq.connections import RedisSettings

from cvr.config import get_settings
from cvr.database import close_db, init_db
from cvr.gamification.orchestrator import CompletionOrchestrator
from cvr.logging import setup_logging
from cvr.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 30


async def rewards_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB + Redis connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    await init_redis(settings.redis_url, max_connections=settings.redis_max_connections)
    ctx["orchestrator"] = CompletionOrchestrator(settings=settings)
    logger.info("Reward worker started")


async def rewards_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_redis()
    await close_db()
    logger.info("Reward worker shut down")


async def reevaluate_badges(ctx: dict, user_id: int) -> list[str]:  # type: ignore[type-arg]
    """Re-run badge evaluation for a user. Returns the slugs awarded."""
    orchestrator: CompletionOrchestrator = ctx["orchestrator"]
    try:
        awards = await orchestrator.award_badges(user_id)
    except Exception as exc:
        job_try = ctx.get("job_try", 1)
        logger.warning("Badge re-evaluation failed for user %d (try %d)", user_id, job_try, exc_info=True)
        raise Retry(defer=job_try * RETRY_BACKOFF_SECONDS) from exc
    if awards:
        logger.info("Awarded badges on retry: %s (user=%d)", [a.slug for a in awards], user_id)
    return [a.slug for a in awards]


class WorkerSettings:
    """arq worker settings for the reward engine."""

    functions = [reevaluate_badges]
    on_startup = rewards_startup
    on_shutdown = rewards_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    max_tries = 5
    job_timeout = 60
