"""
Background Expiration Sweeper
=============================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 120 s).

Concurrency safety
------------------
* **Redis distributed lock** per job ensures only one API process runs a
  given sweep at a time; the others skip the cycle.
* Each job re-checks reservation status inside its own transaction, so an
  overlapping run (e.g. an admin-triggered sweep) is idempotent.

Jobs per cycle
--------------
1. Expire unpaid approved reservations close to departure.
2. Reject pending approvals close to departure.
3. Complete trips more than 24 h past departure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Optional

import redis.asyncio as aioredis

from src.config import settings
from src.infrastructure.audit import AuditLogger
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import DistributedLock
from src.infrastructure.notifications import RedisNotifier
from src.infrastructure.redis_client import get_redis
from src.services.expiration import ExpirationSweeper

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None

JOBS = ("unpaid_reservations", "pending_approvals", "completed_trips")


def build_sweeper() -> ExpirationSweeper:
    return ExpirationSweeper(
        async_session_factory,
        RedisNotifier(get_redis),
        AuditLogger(async_session_factory),
    )


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info("Sweeper started (interval=%ds)", settings.sweep_interval_seconds)


async def stop_sweeper_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    sweeper = build_sweeper()
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(sweeper)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_sweep_cycle(
    sweeper: ExpirationSweeper, redis: Optional[aioredis.Redis] = None
) -> dict[str, Optional[dict]]:
    """Run every job once.  A job whose lock is held reports ``None``."""
    redis = redis or await get_redis()
    runners = {
        "unpaid_reservations": sweeper.sweep_expired_unpaid,
        "pending_approvals": sweeper.sweep_expired_pending_approvals,
        "completed_trips": sweeper.complete_expired_trips,
    }

    results: dict[str, Optional[dict]] = {}
    for job in JOBS:
        lock = DistributedLock(
            redis, f"sweeper:{job}", ttl_seconds=settings.sweep_lock_ttl_seconds
        )
        if not await lock.acquire():
            logger.debug("Lock for %s held by another worker, skipping", job)
            results[job] = None
            continue
        try:
            results[job] = asdict(await runners[job]())
        except Exception:
            logger.exception("Sweep job %s failed", job)
            results[job] = None
        finally:
            await lock.release()
    return results
