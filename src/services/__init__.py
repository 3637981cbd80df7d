"""Sampark service layer -- grievance lifecycle, stores, caches and errors."""

from __future__ import annotations

from src.services.errors import (
    CacheUnavailable,
    CodeAllocationExhausted,
    DuplicateStatusError,
    InvalidStatusError,
    NotFound,
    SamparkError,
    StoreError,
    ValidationError,
)
from src.services.cache import CacheManager, InMemoryCacheBackend, RedisCacheBackend
from src.services.grievance_cache import DraftFormCache, GrievanceListCache
from src.services.grievance_lifecycle import GrievanceLifecycleService
from src.services.grievance_store import GrievanceFields, GrievanceStore
from src.services.status_history import StatusHistoryLog
from src.services.tracking_code import TrackingCodeAllocator, generate_tracking_code

__all__ = [
    "CacheManager",
    "CacheUnavailable",
    "CodeAllocationExhausted",
    "DraftFormCache",
    "DuplicateStatusError",
    "GrievanceFields",
    "GrievanceLifecycleService",
    "GrievanceListCache",
    "GrievanceStore",
    "InMemoryCacheBackend",
    "InvalidStatusError",
    "NotFound",
    "RedisCacheBackend",
    "SamparkError",
    "StatusHistoryLog",
    "StoreError",
    "TrackingCodeAllocator",
    "ValidationError",
    "generate_tracking_code",
]
