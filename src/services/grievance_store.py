"""Durable grievance records.

:class:`GrievanceStore` is a thin, typed repository over one
``AsyncSession``.  It flushes but never commits; transaction boundaries
belong to the lifecycle service.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Final

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import GrievanceRecord, StatusEntryRecord
from src.models.enums import GrievanceCategory, GrievancePriority
from src.models.grievance import GrievanceFilters
from src.services.errors import InvalidStatusError, ValidationError
from src.services.status_history import parse_status

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_SORTABLE_COLUMNS: Final[dict[str, object]] = {
    "created_at": GrievanceRecord.created_at,
    "updated_at": GrievanceRecord.updated_at,
    "title": GrievanceRecord.title,
    "category": GrievanceRecord.category,
    "priority": GrievanceRecord.priority,
}


def _parse_coordinate(value: float | str | None, name: str, limit: float) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}") from None
    if math.isnan(parsed) or not -limit <= parsed <= limit:
        raise ValidationError(f"Invalid {name}")
    return parsed


def parse_category(value: str) -> GrievanceCategory:
    try:
        return GrievanceCategory(value.strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid category '{value}'. Valid categories: {[c.value for c in GrievanceCategory]}"
        ) from None


def parse_priority(value: str | None) -> GrievancePriority:
    if value is None or not value.strip():
        return GrievancePriority.MEDIUM
    try:
        return GrievancePriority(value.strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid priority '{value}'. Valid priorities: {[p.value for p in GrievancePriority]}"
        ) from None


@dataclass(slots=True)
class GrievanceFields:
    """Caller-supplied fields of a new grievance."""

    title: str
    description: str
    category: str
    location: str
    latitude: float | str | None = None
    longitude: float | str | None = None
    images: list[str] = field(default_factory=list)
    priority: str | None = None

    def normalized(self) -> GrievanceFields:
        """Return a validated copy with enums upper-cased and coordinates parsed.

        Raises :class:`ValidationError` when a required field is blank or a
        value is outside its domain.
        """
        title = (self.title or "").strip()
        description = (self.description or "").strip()
        category = (self.category or "").strip()
        location = (self.location or "").strip()
        if not (title and description and category and location):
            raise ValidationError("Missing required fields")

        return replace(
            self,
            title=title,
            description=description,
            category=parse_category(category),
            location=location,
            latitude=_parse_coordinate(self.latitude, "latitude", 90.0),
            longitude=_parse_coordinate(self.longitude, "longitude", 180.0),
            images=[url.strip() for url in self.images or [] if url and url.strip()],
            priority=parse_priority(self.priority),
        )


class GrievanceStore:
    """CRUD and lookup queries over the ``grievances`` table."""

    __slots__ = ("_session",)

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def tracking_code_exists(self, tracking_id: str) -> bool:
        stmt = select(GrievanceRecord.id).where(GrievanceRecord.tracking_id == tracking_id).limit(1)
        return (await self._session.scalar(stmt)) is not None

    async def create(self, *, tracking_id: str, user_id: str, fields: GrievanceFields) -> GrievanceRecord:
        clean = fields.normalized()
        now = datetime.now(UTC)
        record = GrievanceRecord(
            tracking_id=tracking_id.upper(),
            title=clean.title,
            description=clean.description,
            category=clean.category,
            location=clean.location,
            latitude=clean.latitude,
            longitude=clean.longitude,
            images=list(clean.images),
            priority=clean.priority,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        self._session.add(record)
        # Surface unique-constraint violations here rather than at commit
        await self._session.flush()
        return record

    async def find_by_tracking_code(self, tracking_id: str) -> GrievanceRecord | None:
        stmt = select(GrievanceRecord).where(GrievanceRecord.tracking_id == tracking_id.strip().upper())
        return await self._session.scalar(stmt)

    async def find_by_id(self, grievance_id: str, *, for_update: bool = False) -> GrievanceRecord | None:
        stmt = select(GrievanceRecord).where(GrievanceRecord.id == grievance_id)
        if for_update:
            stmt = stmt.with_for_update()
        return await self._session.scalar(stmt)

    async def find_owned(self, grievance_id: str, user_id: str) -> GrievanceRecord | None:
        stmt = select(GrievanceRecord).where(
            GrievanceRecord.id == grievance_id,
            GrievanceRecord.user_id == user_id,
        )
        return await self._session.scalar(stmt)

    async def list_by_owner(self, user_id: str) -> list[GrievanceRecord]:
        stmt = (
            select(GrievanceRecord)
            .where(GrievanceRecord.user_id == user_id)
            .order_by(GrievanceRecord.created_at.desc(), GrievanceRecord.tracking_id)
        )
        return list((await self._session.scalars(stmt)).all())

    async def touch_updated_at(self, grievance_id: str) -> datetime:
        now = datetime.now(UTC)
        await self._session.execute(
            update(GrievanceRecord).where(GrievanceRecord.id == grievance_id).values(updated_at=now)
        )
        return now

    # -- Administrative ------------------------------------------------------

    async def list_all(
        self,
        filters: GrievanceFilters,
        *,
        page: int,
        limit: int,
    ) -> tuple[list[GrievanceRecord], int]:
        """Return one page of grievances matching *filters* plus the total count.

        The status filter matches the *current* status, i.e. the newest
        history entry, and is applied before pagination.
        """
        conditions = []

        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    GrievanceRecord.tracking_id.ilike(pattern),
                    GrievanceRecord.title.ilike(pattern),
                    GrievanceRecord.description.ilike(pattern),
                    GrievanceRecord.location.ilike(pattern),
                )
            )
        if filters.category:
            conditions.append(GrievanceRecord.category == parse_category(filters.category))
        if filters.priority:
            conditions.append(GrievanceRecord.priority == parse_priority(filters.priority))
        if filters.status:
            try:
                status = parse_status(filters.status)
            except InvalidStatusError:
                raise ValidationError(f"Invalid status filter '{filters.status}'") from None
            latest_status = (
                select(StatusEntryRecord.status)
                .where(StatusEntryRecord.grievance_id == GrievanceRecord.id)
                .order_by(StatusEntryRecord.created_at.desc(), StatusEntryRecord.id.desc())
                .limit(1)
                .correlate(GrievanceRecord)
                .scalar_subquery()
            )
            conditions.append(latest_status == status)

        sort_column = _SORTABLE_COLUMNS.get(filters.sort_by)
        if sort_column is None:
            raise ValidationError(f"Cannot sort by '{filters.sort_by}'")
        ordering = sort_column.asc() if filters.sort_order.lower() == "asc" else sort_column.desc()

        total = await self._session.scalar(
            select(func.count()).select_from(GrievanceRecord).where(*conditions)
        )
        stmt = (
            select(GrievanceRecord)
            .where(*conditions)
            .order_by(ordering, GrievanceRecord.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        records = list((await self._session.scalars(stmt)).all())
        return records, int(total or 0)

    async def delete(self, grievance_id: str) -> bool:
        """Hard-delete a grievance and its status history."""
        await self._session.execute(
            delete(StatusEntryRecord).where(StatusEntryRecord.grievance_id == grievance_id)
        )
        result = await self._session.execute(delete(GrievanceRecord).where(GrievanceRecord.id == grievance_id))
        deleted = result.rowcount > 0
        if deleted:
            logger.info("grievance_store.deleted", grievance_id=grievance_id)
        return deleted
