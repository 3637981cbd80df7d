"""Append-only status history per grievance.

Entries are never updated or deleted through this log.  Ordering is by
``created_at`` descending with the autoincrement id breaking ties, so the
first entry returned is always the one that defines the current status.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import StatusEntryRecord
from src.models.enums import GrievanceStatus
from src.services.errors import InvalidStatusError

_NEWEST_FIRST = (StatusEntryRecord.created_at.desc(), StatusEntryRecord.id.desc())


def parse_status(value: str | GrievanceStatus | None) -> GrievanceStatus:
    """Upper-case and validate a status value."""
    if value is None or not str(value).strip():
        raise InvalidStatusError("Status is required")
    try:
        return GrievanceStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidStatusError(
            f"Invalid status '{value}'. Valid statuses: {[s.value for s in GrievanceStatus]}"
        ) from None


class StatusHistoryLog:
    __slots__ = ("_session",)

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        grievance_id: str,
        status: str | GrievanceStatus,
        comment: str | None,
        author_id: str | None,
    ) -> StatusEntryRecord:
        entry = StatusEntryRecord(
            grievance_id=grievance_id,
            status=parse_status(status),
            comment=comment or None,
            created_by=author_id,
            created_at=datetime.now(UTC),
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def latest(self, grievance_id: str) -> StatusEntryRecord | None:
        stmt = (
            select(StatusEntryRecord)
            .where(StatusEntryRecord.grievance_id == grievance_id)
            .order_by(*_NEWEST_FIRST)
            .limit(1)
        )
        return await self._session.scalar(stmt)

    async def current_status(self, grievance_id: str) -> GrievanceStatus:
        # A grievance always gets a seed entry; tolerate its absence anyway.
        entry = await self.latest(grievance_id)
        return entry.status if entry is not None else GrievanceStatus.SUBMITTED

    async def all(self, grievance_id: str) -> list[StatusEntryRecord]:
        stmt = (
            select(StatusEntryRecord)
            .where(StatusEntryRecord.grievance_id == grievance_id)
            .order_by(*_NEWEST_FIRST)
        )
        return list((await self._session.scalars(stmt)).all())

    async def all_for(self, grievance_ids: Sequence[str]) -> dict[str, list[StatusEntryRecord]]:
        """Full timelines for several grievances in one query."""
        timelines: dict[str, list[StatusEntryRecord]] = {gid: [] for gid in grievance_ids}
        if not grievance_ids:
            return timelines
        stmt = (
            select(StatusEntryRecord)
            .where(StatusEntryRecord.grievance_id.in_(grievance_ids))
            .order_by(*_NEWEST_FIRST)
        )
        for entry in (await self._session.scalars(stmt)).all():
            timelines[entry.grievance_id].append(entry)
        return timelines

    async def latest_for(self, grievance_ids: Sequence[str]) -> dict[str, StatusEntryRecord]:
        timelines = await self.all_for(grievance_ids)
        return {gid: entries[0] for gid, entries in timelines.items() if entries}
