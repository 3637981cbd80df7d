"""Per-user caches for the grievance list view and form drafts.

Both are best-effort: any cache failure is logged and turned into a miss
or a no-op, never into a failed request.

A list fill races with writers: the database read happens before the
``put``, and an invalidation landing in between would be overwritten by
the older snapshot.  Readers therefore take a :class:`ReadTicket` before
reading, and ``put`` drops the snapshot when the same process
invalidated that user meanwhile.  Invalidations from other processes
are not tracked; their window is bounded by the list TTL.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from src.models.grievance import GrievanceView
from src.services.cache import CacheManager

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def grievance_list_key(user_id: str) -> str:
    return f"grievances:user:{user_id}"


def draft_form_key(user_id: str) -> str:
    return f"form:grievance:{user_id}"


@dataclass(slots=True, eq=False)
class ReadTicket:
    """Marks one in-flight database read of a user's list."""

    stale: bool = False


class GrievanceListCache:
    """Read-through / write-invalidate cache of a user's grievance list."""

    __slots__ = ("_cache", "_in_flight", "_ttl_seconds")

    def __init__(self, cache: CacheManager, *, ttl_seconds: int = 86_400) -> None:
        self._cache = cache
        self._ttl_seconds = ttl_seconds
        self._in_flight: dict[str, set[ReadTicket]] = {}

    def begin_read(self, user_id: str) -> ReadTicket:
        ticket = ReadTicket()
        self._in_flight.setdefault(user_id, set()).add(ticket)
        return ticket

    def end_read(self, user_id: str, ticket: ReadTicket) -> bool:
        """Release *ticket*; return True when its snapshot is still current."""
        tickets = self._in_flight.get(user_id)
        if tickets is not None:
            tickets.discard(ticket)
            if not tickets:
                del self._in_flight[user_id]
        return not ticket.stale

    async def get(self, user_id: str) -> list[GrievanceView] | None:
        try:
            payload = await self._cache.get(grievance_list_key(user_id))
        except Exception:
            logger.warning("cache.list_get_failed", user_id=user_id, exc_info=True)
            return None
        if payload is None:
            return None
        try:
            return [GrievanceView.model_validate(item) for item in payload]
        except Exception:
            # Shape changed between deployments; drop the stale entry.
            logger.warning("cache.list_payload_invalid", user_id=user_id)
            await self.invalidate(user_id)
            return None

    async def put(self, user_id: str, grievances: list[GrievanceView]) -> None:
        payload = [g.model_dump(mode="json") for g in grievances]
        try:
            await self._cache.set(grievance_list_key(user_id), payload, ttl_seconds=self._ttl_seconds)
        except Exception:
            logger.warning("cache.list_put_failed", user_id=user_id, exc_info=True)
            return
        logger.debug("cache.list_stored", user_id=user_id, count=len(payload))

    async def invalidate(self, user_id: str) -> None:
        for ticket in self._in_flight.get(user_id, ()):
            ticket.stale = True
        try:
            await self._cache.delete(grievance_list_key(user_id))
        except Exception:
            logger.warning("cache.list_invalidate_failed", user_id=user_id, exc_info=True)
            return
        logger.debug("cache.list_invalidated", user_id=user_id)


class DraftFormCache:
    """Auto-saved, not-yet-submitted grievance form per user."""

    __slots__ = ("_cache", "_ttl_seconds")

    def __init__(self, cache: CacheManager, *, ttl_seconds: int = 86_400) -> None:
        self._cache = cache
        self._ttl_seconds = ttl_seconds

    async def save(self, user_id: str, form: dict[str, Any]) -> bool:
        try:
            await self._cache.set(draft_form_key(user_id), form, ttl_seconds=self._ttl_seconds)
        except Exception:
            logger.warning("cache.draft_save_failed", user_id=user_id, exc_info=True)
            return False
        return True

    async def restore(self, user_id: str) -> dict[str, Any] | None:
        try:
            form = await self._cache.get(draft_form_key(user_id))
        except Exception:
            logger.warning("cache.draft_restore_failed", user_id=user_id, exc_info=True)
            return None
        return form if isinstance(form, dict) else None

    async def clear(self, user_id: str) -> bool:
        try:
            await self._cache.delete(draft_form_key(user_id))
        except Exception:
            logger.warning("cache.draft_clear_failed", user_id=user_id, exc_info=True)
            return False
        return True
