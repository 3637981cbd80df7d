"""Main API router combining all v1 route modules.

Aggregates the routers under the ``/api/v1`` prefix so the FastAPI
application only needs to include a single router.

Includes:
    * Grievance: submission, public tracking, own grievances, drafts
    * Admin: listing, status updates, deletion
    * Health: liveness and readiness probes
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import admin, grievance, health

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(grievance.router)
api_router.include_router(admin.router)
api_router.include_router(health.router)
