"""Grievance view and request models for Sampark.

Views are the read-side projections handed to HTTP handlers and stored
in the per-user list cache.  They are built from ORM rows via
``from_attributes`` and never written back.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.enums import GrievanceStatus


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class StatusEntryView(BaseModel):
    """One immutable record of a grievance's audit trail."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    grievance_id: str
    status: GrievanceStatus
    comment: str | None = None
    created_by: str | None = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class GrievanceView(BaseModel):
    """A grievance together with (part of) its status history.

    ``statuses`` is newest first.  List views carry only the latest entry;
    detail views carry the full timeline.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    tracking_id: str
    title: str
    description: str
    category: str
    location: str
    latitude: float | None = None
    longitude: float | None = None
    images: list[str] = Field(default_factory=list)
    priority: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    statuses: list[StatusEntryView] = Field(default_factory=list)

    @field_validator("created_at", "updated_at")
    @classmethod
    def timestamps_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def current_status(self) -> GrievanceStatus:
        if not self.statuses:
            return GrievanceStatus.SUBMITTED
        return self.statuses[0].status

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload["current_status"] = str(self.current_status)
        return payload


class StatusTransitionResult(BaseModel):
    """Outcome of an accepted status transition."""

    status_update: StatusEntryView
    grievance: GrievanceView


class OwnedGrievances(BaseModel):
    """A user's grievances, each with its latest status entry only."""

    grievances: list[GrievanceView]
    cached: bool


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_count: int
    has_more: bool


class GrievancePage(BaseModel):
    grievances: list[GrievanceView]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class GrievanceSubmitRequest(BaseModel):
    """Body of a grievance submission.

    Required fields are checked by the lifecycle service so that the same
    rules apply to every caller, not only HTTP ones.
    """

    title: str = Field(default="", max_length=200)
    description: str = Field(default="", max_length=5000)
    category: str = Field(default="", max_length=50)
    location: str = Field(default="", max_length=500)
    latitude: float | str | None = None
    longitude: float | str | None = None
    images: list[str] = Field(default_factory=list, max_length=10)
    priority: str | None = Field(default=None, max_length=20)


class StatusUpdateRequest(BaseModel):
    status: str = Field(default="", max_length=50)
    comment: str | None = Field(default=None, max_length=2000)


class GrievanceFilters(BaseModel):
    """Admin list filters; every field is optional."""

    status: str | None = None
    category: str | None = None
    priority: str | None = None
    search: str | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
