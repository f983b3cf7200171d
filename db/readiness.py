"""
db/readiness.py -- Block startup until the database answers, with bounded backoff.

The RADIUS process is usually started alongside its database (compose, k8s),
so the first few attempts often fail while the server is still booting. Early
retries are fast; the delay grows with each attempt and is capped so the
worst-case wait stays predictable:

    delay(n) = min(interval_ms * min(n, 4), 5000)

The delay is also clipped to the time left before the deadline, so the guard
gives up at timeout_ms and not one full backoff step later. Each attempt is
bounded the same way: ping(timeout=...) gets at most interval_ms or the time
left, whichever is smaller, so a host that swallows packets cannot hold one
attempt past the deadline.

Callers must treat ConnectivityError as fatal: serving authentication requests
against an unreachable store would deny everyone.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from core.errors import ConnectivityError
from db.client import DatabaseClient

logger = logging.getLogger("radiusauthz.db.readiness")

MAX_BACKOFF_MS = 5000
# Drivers reject a zero connect timeout.
MIN_PING_MS = 100
_BACKOFF_STEPS = 4


def backoff_delay_ms(attempt: int, interval_ms: int) -> int:
    """Delay to wait after failed attempt number `attempt` (1-based)."""
    return min(interval_ms * min(attempt, _BACKOFF_STEPS), MAX_BACKOFF_MS)


def wait_for_ready(
    db: DatabaseClient,
    timeout_ms: int = 45000,
    interval_ms: int = 1500,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Ping the database until it answers or timeout_ms elapses.

    Args:
        db:          Client whose ping(timeout=...) is retried.
        timeout_ms:  Total budget for all attempts.
        interval_ms: Base delay; multiplied by the attempt number up to 4x.
        sleep/clock: Injectable for tests (seconds, like time.sleep/monotonic).

    Returns True on the first successful ping.

    Raises:
        ConnectivityError: no ping succeeded within timeout_ms.
    """
    start = clock()
    logger.info("Waiting for database %s ...", db.describe())

    attempt = 0
    while True:
        attempt += 1
        left_ms = timeout_ms - (clock() - start) * 1000
        ping_ms = max(min(interval_ms, left_ms), MIN_PING_MS)
        if db.ping(timeout=ping_ms / 1000):
            logger.info("Database connection successful (attempt %d)", attempt)
            return True

        elapsed_ms = (clock() - start) * 1000
        remaining_ms = timeout_ms - elapsed_ms
        if remaining_ms <= 0:
            break

        wait_ms = min(backoff_delay_ms(attempt, interval_ms), remaining_ms)
        logger.warning("Database not reachable (attempt %d), retrying in %dms", attempt, wait_ms)
        sleep(wait_ms / 1000)

        if (clock() - start) * 1000 >= timeout_ms:
            break

    raise ConnectivityError(f"Database not reachable within {timeout_ms}ms after {attempt} attempt(s)")
