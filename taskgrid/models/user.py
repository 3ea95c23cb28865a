from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from taskgrid.db.base import Base


class User(Base):
    """System user; accounts themselves are managed by the session provider"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, nullable=False)
    # Global role, e.g. "admin" for the system-wide override
    role = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
