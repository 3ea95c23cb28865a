from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
import enum

from taskgrid.db.base import Base


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class BoardInvitation(Base):
    """Invitation of an e-mail address to a board with a given role"""

    __tablename__ = "board_invitations"

    id = Column(Integer, primary_key=True, index=True)
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, nullable=False, index=True)  # Stored lower-cased
    role = Column(String, nullable=False)
    invited_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(
        Enum(InvitationStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=InvitationStatus.PENDING,
    )
    token = Column(String, unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    board = relationship("Board")
