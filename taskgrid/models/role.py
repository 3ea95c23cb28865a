from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Boolean

from taskgrid.db.base import Base


class Role(Base):
    """Custom role defined as a set of permission ids.

    board_id is NULL for system-wide roles; a board-specific role with the
    same slug wins over the system-wide one.
    """

    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    permissions = Column(JSON, nullable=False, default=list)
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=True)
    is_system = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
