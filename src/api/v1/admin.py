"""Administrative grievance endpoints (ADMIN role only)."""

from __future__ import annotations

from typing import Literal

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.v1.grievance import get_lifecycle
from src.middleware.auth import AuthenticatedUser, require_admin
from src.models.grievance import GrievanceFilters, StatusUpdateRequest
from src.services.grievance_lifecycle import GrievanceLifecycleService

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/grievances")
async def list_grievances(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    status: str | None = None,
    category: str | None = None,
    priority: str | None = None,
    search: str | None = Query(default=None, max_length=200),
    sort_by: Literal["created_at", "updated_at", "title", "category", "priority"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    _admin: AuthenticatedUser = Depends(require_admin),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    """Paginated, filterable list of all grievances with full histories."""
    filters = GrievanceFilters(
        status=status,
        category=category,
        priority=priority,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = await lifecycle.list_all(filters, page=page, limit=limit)
    return {
        "success": True,
        "grievances": [g.to_payload() for g in result.grievances],
        "pagination": result.pagination.model_dump(),
    }


@router.get("/grievances/{grievance_id}")
async def get_grievance(
    grievance_id: str,
    _admin: AuthenticatedUser = Depends(require_admin),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    grievance = await lifecycle.get(grievance_id)
    return {"success": True, "grievance": grievance.to_payload()}


@router.patch("/grievances/{grievance_id}/status")
async def update_grievance_status(
    grievance_id: str,
    body: StatusUpdateRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    result = await lifecycle.transition(grievance_id, body.status, body.comment, admin.id)
    return {
        "success": True,
        "message": "Status updated successfully",
        "status_update": result.status_update.model_dump(mode="json"),
        "grievance": result.grievance.to_payload(),
    }


@router.delete("/grievances/{grievance_id}")
async def delete_grievance(
    grievance_id: str,
    admin: AuthenticatedUser = Depends(require_admin),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    """Hard delete; the status history goes with it."""
    await lifecycle.delete(grievance_id)
    logger.info("api.admin.grievance_deleted", grievance_id=grievance_id, admin_id=admin.id)
    return {"success": True, "message": "Grievance deleted successfully"}
