"""Citizen-facing grievance endpoints for Sampark.

Submission, public tracking by code, the caller's own grievances, the
self-service status update and form draft auto-save.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Request

from src.middleware.auth import AuthenticatedUser, get_current_user
from src.models.grievance import GrievanceSubmitRequest, StatusUpdateRequest
from src.services.grievance_lifecycle import GrievanceLifecycleService
from src.services.grievance_store import GrievanceFields

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/grievance", tags=["grievance"])


def get_lifecycle(request: Request) -> GrievanceLifecycleService:
    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is None:
        raise HTTPException(status_code=503, detail="Grievance service not available")
    return lifecycle


@router.post("/submit", status_code=201)
async def submit_grievance(
    body: GrievanceSubmitRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    """Submit a new grievance and receive its tracking code."""
    fields = GrievanceFields(
        title=body.title,
        description=body.description,
        category=body.category,
        location=body.location,
        latitude=body.latitude,
        longitude=body.longitude,
        images=body.images,
        priority=body.priority,
    )
    grievance = await lifecycle.submit(user.id, fields)
    return {
        "success": True,
        "tracking_id": grievance.tracking_id,
        "grievance": grievance.to_payload(),
    }


@router.get("/track/{tracking_id}")
async def track_grievance(
    tracking_id: str,
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    """Public status lookup by tracking code (case-insensitive)."""
    grievance = await lifecycle.track_by_code(tracking_id)
    return {"success": True, "grievance": grievance.to_payload()}


@router.get("/my-grievances")
async def my_grievances(
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    """The caller's grievances, newest first, each with its latest status."""
    owned = await lifecycle.list_owned(user.id)
    return {
        "success": True,
        "grievances": [g.to_payload() for g in owned.grievances],
        "cached": owned.cached,
    }


# -- Form drafts -------------------------------------------------------------


@router.post("/form/save")
async def save_form(
    form: dict[str, Any] = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    saved = await lifecycle.save_draft(user.id, form)
    return {"success": True, "saved": saved, "message": "Form data saved" if saved else "Form data not cached"}


@router.get("/form/restore")
async def restore_form(
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    return {"success": True, "form_data": await lifecycle.restore_draft(user.id)}


@router.delete("/form/clear")
async def clear_form(
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    await lifecycle.clear_draft(user.id)
    return {"success": True, "message": "Form data cleared"}


# -- Single grievance --------------------------------------------------------


@router.get("/{grievance_id}")
async def get_grievance(
    grievance_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    """One of the caller's own grievances with its full history."""
    grievance = await lifecycle.get_owned(user.id, grievance_id)
    return {"success": True, "grievance": grievance.to_payload()}


@router.post("/{grievance_id}/status")
async def update_status(
    grievance_id: str,
    body: StatusUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: GrievanceLifecycleService = Depends(get_lifecycle),
) -> dict:
    """Self-service status update.

    Owners may update their own grievances; admins may update any.
    """
    result = await lifecycle.transition(
        grievance_id,
        body.status,
        body.comment,
        user.id,
        owner_id=None if user.is_admin else user.id,
    )
    return {
        "success": True,
        "status_update": result.status_update.model_dump(mode="json"),
        "grievance": result.grievance.to_payload(),
    }
