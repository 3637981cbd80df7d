"""Grievance lifecycle: submission, status transitions and read views.

This is the only component that writes grievances or status entries.
Submission allocates a tracking code, inserts the grievance and its seed
``SUBMITTED`` entry in one transaction, then clears the user's draft and
list cache.  Transitions accept any status except the current one; there
is no ordering between statuses, so e.g. a resolved grievance may be
reopened.

Every store call is a suspension point; steps within one operation run
strictly in sequence.  A list read that overlaps an invalidation in this
process is returned but not cached; see :mod:`src.services.grievance_cache`
for the cross-process window.
"""

from __future__ import annotations

import contextlib
import math
from collections.abc import AsyncIterator
from typing import Any, Final

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.tables import GrievanceRecord, StatusEntryRecord
from src.models.enums import GrievanceStatus
from src.models.grievance import (
    GrievanceFilters,
    GrievancePage,
    GrievanceView,
    OwnedGrievances,
    Pagination,
    StatusEntryView,
    StatusTransitionResult,
)
from src.services.errors import DuplicateStatusError, NotFound, StoreError
from src.services.grievance_cache import DraftFormCache, GrievanceListCache
from src.services.grievance_store import GrievanceFields, GrievanceStore
from src.services.status_history import StatusHistoryLog, parse_status
from src.services.tracking_code import TrackingCodeAllocator

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

SEED_COMMENT: Final[str] = "Grievance submitted successfully"

# One extra attempt when a concurrent writer wins the tracking-code race
_SUBMIT_ATTEMPTS: Final[int] = 2


def build_view(record: GrievanceRecord, entries: list[StatusEntryRecord]) -> GrievanceView:
    """Project an ORM row plus (newest-first) history entries into a view."""
    view = GrievanceView.model_validate(record)
    return view.model_copy(update={"statuses": [StatusEntryView.model_validate(e) for e in entries]})


class GrievanceLifecycleService:
    """Orchestrates the grievance store, status history and per-user caches.

    Parameters
    ----------
    session_factory:
        Async session factory; every operation opens its own session.
    allocator:
        Tracking-code allocator with a bounded retry ceiling.
    list_cache:
        Per-user "my grievances" cache, invalidated on every write that
        can change its contents.
    drafts:
        Per-user form draft cache, cleared on successful submission.
    max_page_size:
        Upper bound for admin listing page sizes.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        allocator: TrackingCodeAllocator,
        list_cache: GrievanceListCache,
        drafts: DraftFormCache,
        max_page_size: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._allocator = allocator
        self._list_cache = list_cache
        self._drafts = drafts
        self._max_page_size = max_page_size

    # -- Internal helpers ------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _session(self, operation: str, *, write: bool = False) -> AsyncIterator[AsyncSession]:
        """Open a session (and a transaction when *write*), mapping DB errors to StoreError."""
        try:
            async with self._session_factory() as session:
                if write:
                    async with session.begin():
                        yield session
                else:
                    yield session
        except SQLAlchemyError as exc:
            logger.error("grievance.store_failed", operation=operation, exc_info=True)
            raise StoreError(f"Failed to {operation}") from exc

    async def _load_view(self, session: AsyncSession, grievance_id: str) -> GrievanceView:
        record = await GrievanceStore(session).find_by_id(grievance_id)
        if record is None:
            raise NotFound()
        return build_view(record, await StatusHistoryLog(session).all(grievance_id))

    # -- Submission ------------------------------------------------------------

    async def submit(self, owner_id: str, fields: GrievanceFields) -> GrievanceView:
        """Create a grievance for *owner_id* and return it with its seed history.

        The returned view's ``tracking_id`` is the code to hand back to the
        citizen.
        """
        clean = fields.normalized()

        view: GrievanceView | None = None
        for attempt in range(1, _SUBMIT_ATTEMPTS + 1):
            try:
                async with self._session_factory() as session, session.begin():
                    store = GrievanceStore(session)
                    tracking_id = await self._allocator.allocate(store)
                    record = await store.create(tracking_id=tracking_id, user_id=owner_id, fields=clean)
                    seed = await StatusHistoryLog(session).append(
                        record.id, GrievanceStatus.SUBMITTED, SEED_COMMENT, owner_id
                    )
                    view = build_view(record, [seed])
            except IntegrityError as exc:
                if attempt == _SUBMIT_ATTEMPTS:
                    logger.error("grievance.submit_conflict", owner_id=owner_id, exc_info=True)
                    raise StoreError("Failed to submit grievance") from exc
                logger.warning("grievance.tracking_code_race", owner_id=owner_id, attempt=attempt)
                continue
            except SQLAlchemyError as exc:
                logger.error("grievance.store_failed", operation="submit grievance", exc_info=True)
                raise StoreError("Failed to submit grievance") from exc
            break

        assert view is not None
        await self._drafts.clear(owner_id)
        await self._list_cache.invalidate(owner_id)

        logger.info(
            "grievance.submitted",
            grievance_id=view.id,
            tracking_id=view.tracking_id,
            owner_id=owner_id,
            category=view.category,
        )
        return view

    # -- Status transitions ----------------------------------------------------

    async def transition(
        self,
        grievance_id: str,
        new_status: str,
        comment: str | None,
        actor_id: str,
        *,
        owner_id: str | None = None,
    ) -> StatusTransitionResult:
        """Append a status entry unless it repeats the current status.

        When *owner_id* is given the grievance must belong to that user,
        otherwise it is reported as not found.
        """
        async with self._session("update grievance status", write=True) as session:
            store = GrievanceStore(session)
            history = StatusHistoryLog(session)

            record = await store.find_by_id(grievance_id, for_update=True)
            if record is None or (owner_id is not None and record.user_id != owner_id):
                raise NotFound()

            status = parse_status(new_status)
            current = await history.current_status(grievance_id)
            if current == status:
                raise DuplicateStatusError()

            entry = await history.append(grievance_id, status, comment, actor_id)
            await store.touch_updated_at(grievance_id)
            entry_view = StatusEntryView.model_validate(entry)
            grievance_owner = record.user_id

        async with self._session("load grievance") as session:
            refreshed = await self._load_view(session, grievance_id)

        await self._list_cache.invalidate(grievance_owner)

        logger.info(
            "grievance.status_changed",
            grievance_id=grievance_id,
            from_status=str(current),
            to_status=str(status),
            actor_id=actor_id,
        )
        return StatusTransitionResult(status_update=entry_view, grievance=refreshed)

    # -- Reads -----------------------------------------------------------------

    async def track_by_code(self, tracking_id: str) -> GrievanceView:
        """Public lookup; the tracking code itself is the credential."""
        async with self._session("track grievance") as session:
            record = await GrievanceStore(session).find_by_tracking_code(tracking_id)
            if record is None:
                raise NotFound()
            return build_view(record, await StatusHistoryLog(session).all(record.id))

    async def list_owned(self, owner_id: str) -> OwnedGrievances:
        cached = await self._list_cache.get(owner_id)
        if cached is not None:
            return OwnedGrievances(grievances=cached, cached=True)

        ticket = self._list_cache.begin_read(owner_id)
        try:
            async with self._session("fetch grievances") as session:
                records = await GrievanceStore(session).list_by_owner(owner_id)
                latest = await StatusHistoryLog(session).latest_for([r.id for r in records])
        finally:
            current = self._list_cache.end_read(owner_id, ticket)

        views = [build_view(r, [latest[r.id]] if r.id in latest else []) for r in records]
        if current:
            await self._list_cache.put(owner_id, views)
        else:
            logger.debug("grievance.list_fill_skipped", owner_id=owner_id)
        return OwnedGrievances(grievances=views, cached=False)

    async def get_owned(self, owner_id: str, grievance_id: str) -> GrievanceView:
        async with self._session("fetch grievance") as session:
            record = await GrievanceStore(session).find_owned(grievance_id, owner_id)
            if record is None:
                raise NotFound()
            return build_view(record, await StatusHistoryLog(session).all(record.id))

    # -- Administration --------------------------------------------------------

    async def get(self, grievance_id: str) -> GrievanceView:
        async with self._session("fetch grievance") as session:
            return await self._load_view(session, grievance_id)

    async def list_all(self, filters: GrievanceFilters, *, page: int = 1, limit: int = 10) -> GrievancePage:
        page = max(page, 1)
        limit = min(max(limit, 1), self._max_page_size)

        async with self._session("fetch grievances") as session:
            records, total = await GrievanceStore(session).list_all(filters, page=page, limit=limit)
            timelines = await StatusHistoryLog(session).all_for([r.id for r in records])

        total_pages = math.ceil(total / limit) if total else 0
        return GrievancePage(
            grievances=[build_view(r, timelines.get(r.id, [])) for r in records],
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_count=total,
                has_more=page < total_pages,
            ),
        )

    async def delete(self, grievance_id: str) -> None:
        """Administrative hard delete; not part of the status state machine."""
        async with self._session("delete grievance", write=True) as session:
            store = GrievanceStore(session)
            record = await store.find_by_id(grievance_id)
            if record is None:
                raise NotFound()
            owner_id = record.user_id
            await store.delete(grievance_id)

        await self._list_cache.invalidate(owner_id)
        logger.info("grievance.deleted", grievance_id=grievance_id, owner_id=owner_id)

    # -- Drafts ----------------------------------------------------------------

    async def save_draft(self, owner_id: str, form: dict[str, Any]) -> bool:
        return await self._drafts.save(owner_id, form)

    async def restore_draft(self, owner_id: str) -> dict[str, Any] | None:
        return await self._drafts.restore(owner_id)

    async def clear_draft(self, owner_id: str) -> bool:
        return await self._drafts.clear(owner_id)
