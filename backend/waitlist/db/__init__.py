from waitlist.db.base import Base
from waitlist.db.session import get_db, engine, SessionLocal
from waitlist.db.tables import ALL_TABLE_NAMES

__all__ = ["get_db", "engine", "SessionLocal", "Base", "ALL_TABLE_NAMES"]
