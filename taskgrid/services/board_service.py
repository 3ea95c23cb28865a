from typing import FrozenSet, Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, or_
from datetime import datetime

from taskgrid.core import get_settings
from taskgrid.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from taskgrid.logs.debug_log import debug_logger, log_function
from taskgrid.models.audit import ActivityType, AuditAction
from taskgrid.models.board import Board, BoardMember, BoardRole, BoardVisibility
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.board import BoardCreate, BoardUpdate
from taskgrid.schemas.property import Property, PropertyOption, PropertyType
from taskgrid.schemas.view import View, ViewType
from taskgrid.services.access_service import (
    AccessService,
    FIXED_ROLES,
    MANAGER_ROLES,
    ROLE_PERMISSIONS,
    ungrantable,
)
from taskgrid.services.audit_service import AuditService


def default_schema() -> List[dict]:
    """Properties every new board starts with"""
    status = Property(
        name="Status",
        type=PropertyType.STATUS,
        order=0,
        options=[
            PropertyOption(label="To Do", color="gray"),
            PropertyOption(label="In Progress", color="blue"),
            PropertyOption(label="Done", color="green"),
        ],
    )
    return [status.model_dump(mode="json", exclude_none=True)]


def default_views() -> List[dict]:
    return [View(name="Table", type=ViewType.TABLE, is_default=True).to_json()]


class BoardService:
    """CRUD operations service for Board and BoardMember models"""

    @staticmethod
    @log_function()
    async def create(db: AsyncSession, data: BoardCreate, owner_id: int) -> Board:
        """Create a board together with its owner membership row"""
        board = Board(
            name=data.name,
            description=data.description,
            visibility=data.visibility,
            owner_id=owner_id,
            properties=default_schema(),
            views=default_views(),
        )
        db.add(board)
        await db.flush()

        db.add(BoardMember(
            board_id=board.id,
            user_id=owner_id,
            role=BoardRole.OWNER.value,
            added_by=owner_id,
        ))
        await AuditService.record_audit(
            db, AuditAction.BOARD_CREATED, "board", board.id, owner_id, {"name": board.name}
        )

        await db.commit()
        await db.refresh(board)
        return board

    @staticmethod
    async def get_by_id(db: AsyncSession, board_id: int) -> Optional[Board]:
        query = select(Board).where(Board.id == board_id)
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def require(db: AsyncSession, board_id: int) -> Board:
        board = await BoardService.get_by_id(db, board_id)
        if board is None:
            raise NotFoundError(f"Board {board_id} not found")
        return board

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: int,
        global_role: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Board]:
        """Boards the user owns, is a member of, or that are workspace-visible.

        Global admins see every board.
        """
        query = select(Board)
        if global_role != get_settings().SYSTEM_ADMIN_ROLE:
            member_boards = select(BoardMember.board_id).where(BoardMember.user_id == user_id)
            query = query.where(or_(
                Board.owner_id == user_id,
                Board.id.in_(member_boards),
                Board.visibility == BoardVisibility.WORKSPACE,
            ))
        query = query.order_by(Board.updated_at.desc()).offset(skip).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def update(
        db: AsyncSession, board_id: int, data: BoardUpdate, actor_id: Optional[int] = None
    ) -> Board:
        board = await BoardService.require(db, board_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return board

        for field, value in changes.items():
            setattr(board, field, value)
        board.updated_at = datetime.utcnow().replace(tzinfo=None)

        await AuditService.record_audit(
            db, AuditAction.BOARD_UPDATED, "board", board_id, actor_id,
            {key: getattr(value, "value", value) for key, value in changes.items()},
        )
        await db.commit()
        await db.refresh(board)
        return board

    @staticmethod
    @log_function()
    async def delete(db: AsyncSession, board_id: int, actor_id: Optional[int] = None) -> bool:
        """Delete a board; tasks and members go with it"""
        stmt = delete(Board).where(Board.id == board_id)
        result = await db.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError(f"Board {board_id} not found")
        await AuditService.record_audit(db, AuditAction.BOARD_DELETED, "board", board_id, actor_id)
        await db.commit()
        return True

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    @staticmethod
    async def get_member(db: AsyncSession, board_id: int, user_id: int) -> Optional[BoardMember]:
        query = select(BoardMember).where(
            BoardMember.board_id == board_id,
            BoardMember.user_id == user_id,
        )
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def list_members(db: AsyncSession, board_id: int) -> List[BoardMember]:
        query = (
            select(BoardMember)
            .where(BoardMember.board_id == board_id)
            .order_by(BoardMember.added_at)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def role_permissions(db: AsyncSession, board_id: int, role: str) -> FrozenSet[str]:
        """Permission ids of a fixed role or of a known custom role slug"""
        if role in FIXED_ROLES:
            return ROLE_PERMISSIONS[BoardRole(role)]
        custom = await AccessService.find_role(db, board_id, role)
        if custom is None:
            raise ValidationError(f"Unknown role '{role}'")
        return frozenset(custom.permissions or ())

    @staticmethod
    def check_can_assign(
        actor: AccessResult,
        role: str,
        current_role: Optional[str] = None,
        granted: Optional[Iterable[str]] = None,
    ) -> None:
        """Only owners and admins manage admin members; nobody grants more than they hold"""
        touches_admin = BoardRole.ADMIN.value in (role, current_role)
        if touches_admin and actor.role not in MANAGER_ROLES:
            raise ForbiddenError("Only the owner or an admin can manage admin members")
        if granted is not None:
            missing = ungrantable(actor.permissions, granted)
            if missing:
                raise ForbiddenError(
                    f"Role '{role}' grants permissions you do not hold",
                    {"permissions": missing},
                )

    @staticmethod
    async def upsert_member(
        db: AsyncSession, board_id: int, user_id: int, role: str, added_by: Optional[int]
    ) -> BoardMember:
        """Create or update a member row without committing"""
        member = await BoardService.get_member(db, board_id, user_id)
        if member is None:
            member = BoardMember(board_id=board_id, user_id=user_id, role=role, added_by=added_by)
            db.add(member)
        else:
            member.role = role
        await db.flush()
        return member

    @staticmethod
    @log_function()
    async def add_member(
        db: AsyncSession,
        board_id: int,
        user_id: int,
        role: str,
        actor: AccessResult,
        actor_id: int,
    ) -> BoardMember:
        board = await BoardService.require(db, board_id)
        if user_id == board.owner_id:
            raise ValidationError("The owner is already a member of this board")
        if await BoardService.get_member(db, board_id, user_id) is not None:
            raise ValidationError("User is already a member of this board")
        granted = await BoardService.role_permissions(db, board_id, role)
        BoardService.check_can_assign(actor, role, granted=granted)

        member = BoardMember(board_id=board_id, user_id=user_id, role=role, added_by=actor_id)
        db.add(member)
        await db.flush()
        await AuditService.record_audit(
            db, AuditAction.MEMBER_ADDED, "board_member", member.id, actor_id,
            {"board_id": board_id, "user_id": user_id, "role": role},
        )
        await AuditService.record_activity(
            db, board_id, ActivityType.MEMBER_JOINED, actor_id,
            f"User {user_id} was added as {role}", {"user_id": user_id, "role": role},
        )
        await db.commit()
        await db.refresh(member)
        return member

    @staticmethod
    async def _editable_member(db: AsyncSession, board: Board, user_id: int) -> BoardMember:
        member = await BoardService.get_member(db, board.id, user_id)
        if member is None:
            raise NotFoundError(f"User {user_id} is not a member of board {board.id}")
        if user_id == board.owner_id or member.role == BoardRole.OWNER.value:
            raise ForbiddenError("The owner's membership cannot be changed; transfer ownership instead")
        return member

    @staticmethod
    @log_function()
    async def change_member_role(
        db: AsyncSession,
        board_id: int,
        user_id: int,
        role: str,
        actor: AccessResult,
        actor_id: int,
    ) -> BoardMember:
        board = await BoardService.require(db, board_id)
        member = await BoardService._editable_member(db, board, user_id)
        granted = await BoardService.role_permissions(db, board_id, role)
        BoardService.check_can_assign(actor, role, member.role, granted)

        previous = member.role
        member.role = role
        await AuditService.record_audit(
            db, AuditAction.MEMBER_ROLE_CHANGED, "board_member", member.id, actor_id,
            {"board_id": board_id, "user_id": user_id, "from": previous, "to": role},
        )
        await db.commit()
        await db.refresh(member)
        return member

    @staticmethod
    @log_function()
    async def remove_member(
        db: AsyncSession,
        board_id: int,
        user_id: int,
        actor: AccessResult,
        actor_id: int,
    ) -> bool:
        board = await BoardService.require(db, board_id)
        member = await BoardService._editable_member(db, board, user_id)
        BoardService.check_can_assign(actor, member.role, member.role)

        await db.delete(member)
        await AuditService.record_audit(
            db, AuditAction.MEMBER_REMOVED, "board_member", member.id, actor_id,
            {"board_id": board_id, "user_id": user_id, "role": member.role},
        )
        await AuditService.record_activity(
            db, board_id, ActivityType.MEMBER_LEFT, actor_id,
            f"User {user_id} was removed from the board", {"user_id": user_id},
        )
        await db.commit()
        return True

    @staticmethod
    async def leave(db: AsyncSession, board_id: int, user_id: int) -> bool:
        """Voluntary departure; the owner must transfer ownership first"""
        board = await BoardService.require(db, board_id)
        if user_id == board.owner_id:
            raise ValidationError("The owner cannot leave the board without transferring ownership")
        member = await BoardService.get_member(db, board_id, user_id)
        if member is None:
            raise NotFoundError(f"User {user_id} is not a member of board {board_id}")

        await db.delete(member)
        await AuditService.record_activity(
            db, board_id, ActivityType.MEMBER_LEFT, user_id,
            f"User {user_id} left the board", {"user_id": user_id},
        )
        await db.commit()
        return True

    @staticmethod
    @log_function()
    async def transfer_ownership(
        db: AsyncSession,
        board_id: int,
        current_owner_id: int,
        new_owner_id: int,
    ) -> Board:
        """Hand the board to another user in one transaction.

        The outgoing owner keeps an admin membership, the incoming owner's
        row is created or upgraded to owner.
        """
        board = await BoardService.require(db, board_id)
        if board.owner_id != current_owner_id:
            raise ForbiddenError("Only the board owner can transfer ownership")
        if new_owner_id == current_owner_id:
            raise ValidationError("The user already owns this board")

        try:
            board.owner_id = new_owner_id
            board.updated_at = datetime.utcnow().replace(tzinfo=None)
            await BoardService.upsert_member(
                db, board_id, new_owner_id, BoardRole.OWNER.value, current_owner_id
            )
            await BoardService.upsert_member(
                db, board_id, current_owner_id, BoardRole.ADMIN.value, current_owner_id
            )
            await AuditService.record_audit(
                db, AuditAction.OWNERSHIP_TRANSFERRED, "board", board_id, current_owner_id,
                {"from": current_owner_id, "to": new_owner_id},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            debug_logger.log_exception(f"Ownership transfer of board {board_id} failed")
            raise

        await db.refresh(board)
        return board
