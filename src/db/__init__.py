from src.db.base import Base
from src.db.session import build_engine, build_session_factory, create_engine_for_url, create_tables
from src.db.tables import GrievanceRecord, StatusEntryRecord, UserRecord

__all__ = [
    "Base",
    "GrievanceRecord",
    "StatusEntryRecord",
    "UserRecord",
    "build_engine",
    "build_session_factory",
    "create_engine_for_url",
    "create_tables",
]
