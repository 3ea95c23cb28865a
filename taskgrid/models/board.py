from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Enum, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
import enum

from taskgrid.db.base import Base


class BoardRole(str, enum.Enum):
    """Fixed board roles; any other member role string is a custom role slug"""
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"
    RESTRICTED_EDITOR = "restricted_editor"
    RESTRICTED_VIEWER = "restricted_viewer"


class BoardVisibility(str, enum.Enum):
    PRIVATE = "private"
    WORKSPACE = "workspace"


class Board(Base):
    """Board with its embedded schema (properties) and saved views"""

    __tablename__ = "boards"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    visibility = Column(
        Enum(BoardVisibility, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=BoardVisibility.PRIVATE,
    )
    # Ordered list of property dicts, see taskgrid.schemas.property.Property
    properties = Column(JSON, nullable=False, default=list)
    # List of view dicts, see taskgrid.schemas.view.View
    views = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship("BoardMember", back_populates="board", cascade="all, delete-orphan")
    tasks = relationship("Task", back_populates="board", cascade="all, delete-orphan")


class BoardMember(Base):
    """Membership row; role is a BoardRole value or a custom role slug"""

    __tablename__ = "board_members"
    __table_args__ = (UniqueConstraint("board_id", "user_id", name="uq_board_member"),)

    id = Column(Integer, primary_key=True, index=True)
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, nullable=False, default=BoardRole.VIEWER.value)
    added_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    added_at = Column(DateTime, default=datetime.utcnow)

    board = relationship("Board", back_populates="members")
    user = relationship("User", foreign_keys=[user_id])
