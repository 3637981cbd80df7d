from __future__ import annotations

from enum import StrEnum


class GrievanceCategory(StrEnum):
    __slots__ = ()

    POTHOLES = "POTHOLES"
    WASTE = "WASTE"
    WATER = "WATER"
    ELECTRICITY = "ELECTRICITY"
    DRAINAGE = "DRAINAGE"
    OTHER = "OTHER"


class GrievancePriority(StrEnum):
    __slots__ = ()

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class GrievanceStatus(StrEnum):
    """Values a status entry can carry.

    The current status of a grievance is the status of its newest entry.
    """

    __slots__ = ()

    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class UserRole(StrEnum):
    __slots__ = ()

    USER = "USER"
    ADMIN = "ADMIN"
