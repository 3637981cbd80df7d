"""Human-friendly tracking codes for grievances.

A code is ``SMPK`` + a 5-digit random number + the last 4 digits of the
current epoch time in milliseconds, e.g. ``SMPK482915307``.  Candidates
are not unique on their own; :class:`TrackingCodeAllocator` checks them
against the grievance store and retries up to a fixed ceiling.  The
unique index on ``grievances.tracking_id`` stays the final arbiter for
writers racing between the check and the insert.
"""

from __future__ import annotations

import random
import re
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

import structlog

from src.services.errors import CodeAllocationExhausted

if TYPE_CHECKING:
    from src.services.grievance_store import GrievanceStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

TRACKING_PREFIX: Final[str] = "SMPK"
TRACKING_CODE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^SMPK\d{5}\d{4}$")

_rng = random.SystemRandom()


def generate_tracking_code() -> str:
    """Return one candidate tracking code."""
    random_part = _rng.randint(10_000, 99_999)
    time_part = str(time.time_ns() // 1_000_000)[-4:]
    return f"{TRACKING_PREFIX}{random_part}{time_part}"


def is_tracking_code(value: str) -> bool:
    return TRACKING_CODE_PATTERN.match(value) is not None


class TrackingCodeAllocator:
    """Turns the candidate generator into an effectively unique allocator."""

    __slots__ = ("_generate", "_max_attempts")

    def __init__(
        self,
        *,
        max_attempts: int = 20,
        generate: Callable[[], str] = generate_tracking_code,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._max_attempts = max_attempts
        self._generate = generate

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def allocate(self, store: GrievanceStore) -> str:
        """Return a code no existing grievance uses.

        Raises :class:`CodeAllocationExhausted` after ``max_attempts``
        consecutive collisions.
        """
        for attempt in range(1, self._max_attempts + 1):
            candidate = self._generate()
            if not await store.tracking_code_exists(candidate):
                if attempt > 1:
                    logger.info("tracking_code.allocated_after_retry", attempts=attempt)
                return candidate
            logger.debug("tracking_code.collision", candidate=candidate, attempt=attempt)

        logger.error("tracking_code.exhausted", max_attempts=self._max_attempts)
        raise CodeAllocationExhausted()
