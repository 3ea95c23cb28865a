from taskgrid.db.base import Base
from taskgrid.db.database import engine, async_session_factory, get_async_session, init_db

__all__ = ["Base", "engine", "async_session_factory", "get_async_session", "init_db"]
