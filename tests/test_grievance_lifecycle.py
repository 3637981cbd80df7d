"""Tests for the grievance lifecycle service against an in-memory database."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from src.models.enums import GrievanceStatus
from src.models.grievance import GrievanceFilters
from src.services.errors import (
    CodeAllocationExhausted,
    DuplicateStatusError,
    InvalidStatusError,
    NotFound,
    StoreError,
    ValidationError,
)
from src.services.cache import CacheManager
from src.services.grievance_cache import GrievanceListCache
from src.services.grievance_lifecycle import SEED_COMMENT, GrievanceLifecycleService
from src.services.grievance_store import GrievanceStore
from src.services.tracking_code import TRACKING_CODE_PATTERN, TrackingCodeAllocator


def _service(session_factory, list_cache, drafts, allocator) -> GrievanceLifecycleService:
    return GrievanceLifecycleService(
        session_factory=session_factory,
        allocator=allocator,
        list_cache=list_cache,
        drafts=drafts,
    )


def _fixed_codes(*codes: str) -> MagicMock:
    """Allocator that hands out *codes* without checking the store."""
    allocator = MagicMock(spec=TrackingCodeAllocator)
    allocator.allocate = AsyncMock(side_effect=list(codes))
    return allocator


# -----------------------------------------------------------------------
# Submission
# -----------------------------------------------------------------------


class TestSubmit:
    async def test_submit_returns_code_and_seed_entry(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())

        assert TRACKING_CODE_PATTERN.match(grievance.tracking_id), "tracking code should be SMPK + 9 digits"
        assert len(grievance.statuses) == 1, "a new grievance should have exactly one status entry"
        seed = grievance.statuses[0]
        assert seed.status is GrievanceStatus.SUBMITTED
        assert seed.comment == SEED_COMMENT
        assert seed.created_by == users.citizen
        assert grievance.current_status is GrievanceStatus.SUBMITTED
        assert grievance.category == "POTHOLES"
        assert grievance.priority == "MEDIUM"
        assert grievance.user_id == users.citizen

    async def test_missing_fields_write_nothing(self, lifecycle, users, make_fields) -> None:
        with pytest.raises(ValidationError):
            await lifecycle.submit(users.citizen, make_fields(location=""))
        owned = await lifecycle.list_owned(users.citizen)
        assert owned.grievances == []

    async def test_colliding_candidates_get_distinct_codes(
        self, session_factory, list_cache, drafts, users, make_fields
    ) -> None:
        candidates = iter(["SMPK111110001", "SMPK111110001", "SMPK111110001", "SMPK222220002"])
        service = _service(
            session_factory, list_cache, drafts, TrackingCodeAllocator(generate=lambda: next(candidates))
        )

        first = await service.submit(users.citizen, make_fields())
        second = await service.submit(users.neighbour, make_fields(title="Another pothole"))

        assert first.tracking_id == "SMPK111110001"
        assert second.tracking_id == "SMPK222220002", "the allocator should retry past the taken code"

    async def test_allocation_exhausted(self, session_factory, list_cache, drafts, users, make_fields) -> None:
        service = _service(
            session_factory, list_cache, drafts,
            TrackingCodeAllocator(max_attempts=3, generate=lambda: "SMPK111110001"),
        )
        await service.submit(users.citizen, make_fields())

        with pytest.raises(CodeAllocationExhausted):
            await service.submit(users.citizen, make_fields())
        owned = await service.list_owned(users.citizen)
        assert len(owned.grievances) == 1, "an exhausted allocation should write nothing"

    async def test_insert_race_retries_with_new_code(
        self, session_factory, list_cache, drafts, users, make_fields
    ) -> None:
        await _service(session_factory, list_cache, drafts, _fixed_codes("SMPK111110001")).submit(
            users.neighbour, make_fields()
        )

        # Simulates a writer that committed the same code between check and insert
        service = _service(session_factory, list_cache, drafts, _fixed_codes("SMPK111110001", "SMPK222220002"))
        grievance = await service.submit(users.citizen, make_fields())

        assert grievance.tracking_id == "SMPK222220002"
        assert len(grievance.statuses) == 1

    async def test_repeated_insert_race_is_a_store_error(
        self, session_factory, list_cache, drafts, users, make_fields
    ) -> None:
        await _service(session_factory, list_cache, drafts, _fixed_codes("SMPK111110001")).submit(
            users.neighbour, make_fields()
        )
        service = _service(session_factory, list_cache, drafts, _fixed_codes("SMPK111110001", "SMPK111110001"))

        with pytest.raises(StoreError):
            await service.submit(users.citizen, make_fields())
        owned = await service.list_owned(users.citizen)
        assert owned.grievances == [], "a failed submission should leave no grievance behind"

    async def test_submit_clears_draft(self, lifecycle, users, make_fields) -> None:
        await lifecycle.save_draft(users.citizen, {"title": "half typed"})
        await lifecycle.submit(users.citizen, make_fields())
        assert await lifecycle.restore_draft(users.citizen) is None

    async def test_submit_invalidates_list_cache(self, lifecycle, users, make_fields) -> None:
        await lifecycle.submit(users.citizen, make_fields(title="first"))
        await lifecycle.list_owned(users.citizen)
        await lifecycle.submit(users.citizen, make_fields(title="second"))

        owned = await lifecycle.list_owned(users.citizen)
        assert owned.cached is False
        assert [g.title for g in owned.grievances] == ["second", "first"]


# -----------------------------------------------------------------------
# Transitions
# -----------------------------------------------------------------------


class TestTransition:
    async def test_duplicate_status_rejected(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())

        with pytest.raises(DuplicateStatusError):
            await lifecycle.transition(grievance.id, "SUBMITTED", "again", users.admin)

        reloaded = await lifecycle.get(grievance.id)
        assert len(reloaded.statuses) == 1, "a rejected transition should not append an entry"

    async def test_accepted_transition(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())

        result = await lifecycle.transition(grievance.id, "under_review", "reviewing now", users.admin)

        assert result.status_update.status is GrievanceStatus.UNDER_REVIEW
        assert result.status_update.comment == "reviewing now"
        assert result.status_update.created_by == users.admin
        assert len(result.grievance.statuses) == 2
        assert result.grievance.current_status is GrievanceStatus.UNDER_REVIEW
        assert [s.status for s in result.grievance.statuses] == ["UNDER_REVIEW", "SUBMITTED"]
        assert result.grievance.updated_at > result.grievance.created_at, "updated_at should advance"

    async def test_any_other_status_is_allowed(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())
        await lifecycle.transition(grievance.id, "RESOLVED", None, users.admin)

        result = await lifecycle.transition(grievance.id, "SUBMITTED", "reopened", users.admin)
        assert result.grievance.current_status is GrievanceStatus.SUBMITTED
        assert len(result.grievance.statuses) == 3

    async def test_invalid_status(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())
        with pytest.raises(InvalidStatusError):
            await lifecycle.transition(grievance.id, "CLOSED", None, users.admin)
        with pytest.raises(InvalidStatusError):
            await lifecycle.transition(grievance.id, "", None, users.admin)

    async def test_unknown_grievance(self, lifecycle, users) -> None:
        with pytest.raises(NotFound):
            await lifecycle.transition("no-such-id", "RESOLVED", None, users.admin)

    async def test_owner_scoping(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())

        with pytest.raises(NotFound):
            await lifecycle.transition(grievance.id, "RESOLVED", None, users.neighbour, owner_id=users.neighbour)

        result = await lifecycle.transition(grievance.id, "RESOLVED", None, users.citizen, owner_id=users.citizen)
        assert result.grievance.current_status is GrievanceStatus.RESOLVED

    async def test_transition_invalidates_owner_list(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())
        await lifecycle.list_owned(users.citizen)
        assert (await lifecycle.list_owned(users.citizen)).cached is True

        await lifecycle.transition(grievance.id, "IN_PROGRESS", None, users.admin)

        owned = await lifecycle.list_owned(users.citizen)
        assert owned.cached is False, "a transition should invalidate the owner's list"
        assert owned.grievances[0].current_status is GrievanceStatus.IN_PROGRESS


# -----------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------


class TestReads:
    async def test_track_by_code(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())
        await lifecycle.transition(grievance.id, "UNDER_REVIEW", None, users.admin)

        first = await lifecycle.track_by_code(grievance.tracking_id.lower())
        second = await lifecycle.track_by_code(grievance.tracking_id)

        assert first == second, "repeated lookups without writes should be identical"
        assert first.id == grievance.id
        assert len(first.statuses) == 2

    async def test_track_unknown_code(self, lifecycle, users) -> None:
        with pytest.raises(NotFound):
            await lifecycle.track_by_code("SMPK00000000")

    async def test_list_owned_carries_latest_status_only(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())
        await lifecycle.transition(grievance.id, "UNDER_REVIEW", None, users.admin)
        await lifecycle.submit(users.neighbour, make_fields())

        owned = await lifecycle.list_owned(users.citizen)

        assert owned.cached is False
        assert len(owned.grievances) == 1, "only the caller's grievances should be listed"
        assert len(owned.grievances[0].statuses) == 1
        assert owned.grievances[0].current_status is GrievanceStatus.UNDER_REVIEW

    async def test_list_owned_served_from_cache(self, lifecycle, users, make_fields) -> None:
        await lifecycle.submit(users.citizen, make_fields())
        fresh = await lifecycle.list_owned(users.citizen)
        cached = await lifecycle.list_owned(users.citizen)

        assert cached.cached is True
        assert [g.to_payload() for g in cached.grievances] == [g.to_payload() for g in fresh.grievances]

    async def test_list_survives_redis_flap(
        self, session_factory, drafts, users, make_fields, flaky_redis, make_cache_manager
    ) -> None:
        lists = GrievanceListCache(make_cache_manager(inmemory_fallback=False), ttl_seconds=60)
        service = _service(session_factory, lists, drafts, TrackingCodeAllocator())
        await service.submit(users.citizen, make_fields(title="first"))

        flaky_redis.up = False
        assert (await service.list_owned(users.citizen)).cached is False
        flaky_redis.up = True
        await service.submit(users.citizen, make_fields(title="second"))
        flaky_redis.up = False

        owned = await service.list_owned(users.citizen)
        assert owned.cached is False, "an outage should fall back to the database"
        assert [g.title for g in owned.grievances] == ["second", "first"]

    async def test_list_consistent_across_workers_without_redis(
        self, session_factory, drafts, users, make_fields
    ) -> None:
        def worker() -> GrievanceLifecycleService:
            lists = GrievanceListCache(CacheManager(redis_url=None, inmemory_fallback=False), ttl_seconds=60)
            return _service(session_factory, lists, drafts, TrackingCodeAllocator())

        worker_a, worker_b = worker(), worker()
        await worker_a.submit(users.citizen, make_fields(title="first"))
        await worker_a.list_owned(users.citizen)
        await worker_b.submit(users.citizen, make_fields(title="second"))

        owned = await worker_a.list_owned(users.citizen)
        assert owned.cached is False
        assert [g.title for g in owned.grievances] == ["second", "first"]

    async def test_invalidation_during_fill_is_not_overwritten(
        self, lifecycle, list_cache, users, make_fields
    ) -> None:
        await lifecycle.submit(users.citizen, make_fields())
        list_by_owner = GrievanceStore.list_by_owner

        async def racing_read(store, user_id):
            records = await list_by_owner(store, user_id)
            # A submit for the same user commits here
            await list_cache.invalidate(user_id)
            return records

        with patch.object(GrievanceStore, "list_by_owner", racing_read):
            assert (await lifecycle.list_owned(users.citizen)).cached is False

        assert await list_cache.get(users.citizen) is None, "the older snapshot should not be cached"
        assert (await lifecycle.list_owned(users.citizen)).cached is False

    async def test_get_owned(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())

        assert (await lifecycle.get_owned(users.citizen, grievance.id)).id == grievance.id
        with pytest.raises(NotFound):
            await lifecycle.get_owned(users.neighbour, grievance.id)

    async def test_store_failure_maps_to_store_error(self, lifecycle) -> None:
        failure = OperationalError("SELECT", {}, Exception("database is gone"))
        with patch.object(GrievanceStore, "find_by_tracking_code", AsyncMock(side_effect=failure)):
            with pytest.raises(StoreError):
                await lifecycle.track_by_code("SMPK123451234")


# -----------------------------------------------------------------------
# Administration
# -----------------------------------------------------------------------


class TestAdministration:
    async def test_list_all_paginates(self, lifecycle, users, make_fields) -> None:
        for i in range(5):
            await lifecycle.submit(users.citizen, make_fields(title=f"Pothole {i}"))

        page = await lifecycle.list_all(GrievanceFilters(), page=2, limit=2)

        assert [g.title for g in page.grievances] == ["Pothole 2", "Pothole 1"]
        assert page.pagination.current_page == 2
        assert page.pagination.total_pages == 3
        assert page.pagination.total_count == 5
        assert page.pagination.has_more is True
        assert all(len(g.statuses) == 1 for g in page.grievances), "admin views carry full timelines"

    async def test_list_all_clamps_limit(self, lifecycle, users, make_fields) -> None:
        await lifecycle.submit(users.citizen, make_fields())
        page = await lifecycle.list_all(GrievanceFilters(), page=1, limit=10_000)
        assert page.pagination.total_pages == 1
        assert page.pagination.has_more is False

    async def test_list_all_empty(self, lifecycle, users) -> None:
        page = await lifecycle.list_all(GrievanceFilters())
        assert page.grievances == []
        assert page.pagination.total_pages == 0
        assert page.pagination.has_more is False

    async def test_list_all_status_filter(self, lifecycle, users, make_fields) -> None:
        done = await lifecycle.submit(users.citizen, make_fields(title="done"))
        await lifecycle.submit(users.citizen, make_fields(title="open"))
        await lifecycle.transition(done.id, "RESOLVED", None, users.admin)

        page = await lifecycle.list_all(GrievanceFilters(status="resolved"))
        assert [g.title for g in page.grievances] == ["done"]

    async def test_delete(self, lifecycle, users, make_fields) -> None:
        grievance = await lifecycle.submit(users.citizen, make_fields())
        await lifecycle.list_owned(users.citizen)

        await lifecycle.delete(grievance.id)

        with pytest.raises(NotFound):
            await lifecycle.get(grievance.id)
        with pytest.raises(NotFound):
            await lifecycle.track_by_code(grievance.tracking_id)
        owned = await lifecycle.list_owned(users.citizen)
        assert owned.cached is False and owned.grievances == []

    async def test_delete_unknown(self, lifecycle, users) -> None:
        with pytest.raises(NotFound):
            await lifecycle.delete("no-such-id")
