from src.models.enums import GrievanceCategory, GrievancePriority, GrievanceStatus, UserRole
from src.models.grievance import (
    GrievanceFilters,
    GrievancePage,
    GrievanceSubmitRequest,
    GrievanceView,
    OwnedGrievances,
    Pagination,
    StatusEntryView,
    StatusTransitionResult,
    StatusUpdateRequest,
)

__all__ = [
    "GrievanceCategory",
    "GrievanceFilters",
    "GrievancePage",
    "GrievancePriority",
    "GrievanceStatus",
    "GrievanceSubmitRequest",
    "GrievanceView",
    "OwnedGrievances",
    "Pagination",
    "StatusEntryView",
    "StatusTransitionResult",
    "StatusUpdateRequest",
    "UserRole",
]
