import secrets
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.core import get_settings
from taskgrid.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from taskgrid.logs.debug_log import log_function
from taskgrid.models.audit import ActivityType, AuditAction
from taskgrid.models.invitation import BoardInvitation, InvitationStatus
from taskgrid.models.user import User
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.board_permissions import InvitationCreate
from taskgrid.services.audit_service import AuditService
from taskgrid.services.board_service import BoardService
from taskgrid.services.security_service import SecurityService


def _now() -> datetime:
    return datetime.utcnow().replace(tzinfo=None)


def expire_if_due(invitation: BoardInvitation, now: Optional[datetime] = None) -> bool:
    """Mark a pending invitation past its expiry as expired; True when it did"""
    now = now or _now()
    if invitation.status == InvitationStatus.PENDING and invitation.expires_at < now:
        invitation.status = InvitationStatus.EXPIRED
        return True
    return False


class InvitationService:
    """Board invitations by e-mail"""

    @staticmethod
    async def get_by_id(db: AsyncSession, invitation_id: int) -> Optional[BoardInvitation]:
        query = select(BoardInvitation).where(BoardInvitation.id == invitation_id)
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def _expire_all(db: AsyncSession, invitations: List[BoardInvitation]) -> List[BoardInvitation]:
        now = _now()
        changed = [invitation for invitation in invitations if expire_if_due(invitation, now)]
        if changed:
            await db.commit()
        return invitations

    @staticmethod
    @log_function()
    async def create(
        db: AsyncSession,
        board_id: int,
        data: InvitationCreate,
        actor: AccessResult,
        actor_id: int,
    ) -> BoardInvitation:
        board = await BoardService.require(db, board_id)
        email = data.email.lower()

        invitee = await SecurityService.get_user_by_email(db, email)
        if invitee is not None:
            if invitee.id == board.owner_id:
                raise ValidationError("The board owner cannot be invited")
            if await BoardService.get_member(db, board_id, invitee.id) is not None:
                raise ValidationError("User is already a member of this board")

        query = select(BoardInvitation).where(
            BoardInvitation.board_id == board_id,
            BoardInvitation.email == email,
            BoardInvitation.status == InvitationStatus.PENDING,
        )
        result = await db.execute(query)
        pending = [inv for inv in result.scalars().all() if not expire_if_due(inv)]
        if pending:
            raise ValidationError("A pending invitation for this e-mail already exists")

        granted = await BoardService.role_permissions(db, board_id, data.role)
        BoardService.check_can_assign(actor, data.role, granted=granted)

        invitation = BoardInvitation(
            board_id=board_id,
            email=email,
            role=data.role,
            invited_by=actor_id,
            status=InvitationStatus.PENDING,
            token=secrets.token_urlsafe(32),
            expires_at=_now() + timedelta(days=get_settings().INVITATION_EXPIRE_DAYS),
        )
        db.add(invitation)
        await db.flush()
        await AuditService.record_audit(
            db, AuditAction.INVITATION_SENT, "invitation", invitation.id, actor_id,
            {"board_id": board_id, "email": email, "role": data.role},
        )
        await db.commit()
        await db.refresh(invitation)
        return invitation

    @staticmethod
    async def list_for_board(
        db: AsyncSession, board_id: int, status: Optional[InvitationStatus] = InvitationStatus.PENDING
    ) -> List[BoardInvitation]:
        query = select(BoardInvitation).where(BoardInvitation.board_id == board_id)
        query = query.order_by(BoardInvitation.created_at.desc())
        result = await db.execute(query)
        invitations = await InvitationService._expire_all(db, list(result.scalars().all()))
        if status is None:
            return invitations
        return [invitation for invitation in invitations if invitation.status == status]

    @staticmethod
    async def list_for_user(db: AsyncSession, user: User) -> List[BoardInvitation]:
        """Pending invitations addressed to the user's e-mail"""
        query = select(BoardInvitation).where(
            BoardInvitation.email == user.email.lower(),
            BoardInvitation.status == InvitationStatus.PENDING,
        )
        result = await db.execute(query)
        invitations = await InvitationService._expire_all(db, list(result.scalars().all()))
        return [inv for inv in invitations if inv.status == InvitationStatus.PENDING]

    @staticmethod
    @log_function()
    async def respond(
        db: AsyncSession, invitation_id: int, user: User, accept: bool
    ) -> BoardInvitation:
        """Accept (membership is created or updated) or decline an invitation"""
        invitation = await InvitationService.get_by_id(db, invitation_id)
        if invitation is None:
            raise NotFoundError(f"Invitation {invitation_id} not found")
        if invitation.email != user.email.lower():
            raise ForbiddenError("This invitation is addressed to someone else")
        if expire_if_due(invitation):
            await db.commit()
            raise ValidationError("This invitation has expired")
        if invitation.status != InvitationStatus.PENDING:
            raise ValidationError(f"This invitation is already {invitation.status.value}")

        invitation.responded_at = _now()
        if accept:
            invitation.status = InvitationStatus.ACCEPTED
            await BoardService.upsert_member(
                db, invitation.board_id, user.id, invitation.role, invitation.invited_by
            )
            await AuditService.record_audit(
                db, AuditAction.INVITATION_ACCEPTED, "invitation", invitation.id, user.id,
                {"board_id": invitation.board_id, "role": invitation.role},
            )
            await AuditService.record_activity(
                db, invitation.board_id, ActivityType.MEMBER_JOINED, user.id,
                f"{user.username} joined the board as {invitation.role}",
                {"user_id": user.id, "role": invitation.role},
            )
        else:
            invitation.status = InvitationStatus.DECLINED
            await AuditService.record_audit(
                db, AuditAction.INVITATION_DECLINED, "invitation", invitation.id, user.id,
                {"board_id": invitation.board_id},
            )

        await db.commit()
        await db.refresh(invitation)
        return invitation

    @staticmethod
    async def cancel(
        db: AsyncSession, board_id: int, invitation_id: int, actor_id: int
    ) -> BoardInvitation:
        invitation = await InvitationService.get_by_id(db, invitation_id)
        if invitation is None or invitation.board_id != board_id:
            raise NotFoundError(f"Invitation {invitation_id} not found")
        if invitation.status != InvitationStatus.PENDING:
            raise ValidationError(f"Only pending invitations can be cancelled, this one is {invitation.status.value}")

        invitation.status = InvitationStatus.CANCELLED
        await AuditService.record_audit(
            db, AuditAction.INVITATION_CANCELLED, "invitation", invitation.id, actor_id,
            {"board_id": board_id},
        )
        await db.commit()
        await db.refresh(invitation)
        return invitation
