from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.core.exceptions import NotFoundError
from taskgrid.db.database import get_async_session
from taskgrid.api.dependencies.auth import get_current_user
from taskgrid.api.dependencies.permissions import can_manage_members, can_view_board
from taskgrid.models.user import User
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.board import BoardRead
from taskgrid.schemas.board_permissions import (
    AddMemberByEmailRequest,
    AddMemberRequest,
    ChangeMemberRoleRequest,
    MemberRead,
    RoleRead,
    TransferOwnershipRequest,
)
from taskgrid.services.access_service import AccessService
from taskgrid.services.board_service import BoardService
from taskgrid.services.security_service import SecurityService

router = APIRouter(
    prefix="/boards/{board_id}",
    tags=["board permissions"],
)


@router.get("/members", response_model=List[MemberRead])
async def list_members(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    access: AccessResult = Depends(can_view_board),
):
    return await BoardService.list_members(db, board_id)


@router.get("/roles", response_model=List[RoleRead])
async def list_roles(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    access: AccessResult = Depends(can_view_board),
):
    """Roles that can be assigned on this board"""
    return await AccessService.list_roles(db, board_id)


@router.post("/members", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
async def add_member(
    board_id: int,
    request: AddMemberRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_manage_members),
):
    """Add a user to the board directly"""
    if await SecurityService.get_user_by_id(db, request.user_id) is None:
        raise NotFoundError(f"User {request.user_id} not found")
    return await BoardService.add_member(
        db, board_id, request.user_id, request.role, access, current_user.id
    )


@router.post("/members/by-email", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
async def add_member_by_email(
    board_id: int,
    request: AddMemberByEmailRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_manage_members),
):
    user = await SecurityService.get_user_by_email(db, request.email)
    if user is None:
        raise NotFoundError(f"No user with e-mail {request.email}")
    return await BoardService.add_member(db, board_id, user.id, request.role, access, current_user.id)


@router.patch("/members/{user_id}", response_model=MemberRead)
async def change_member_role(
    board_id: int,
    user_id: int,
    request: ChangeMemberRoleRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_manage_members),
):
    return await BoardService.change_member_role(
        db, board_id, user_id, request.role, access, current_user.id
    )


@router.delete("/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    board_id: int,
    user_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_manage_members),
):
    await BoardService.remove_member(db, board_id, user_id, access, current_user.id)


@router.post("/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_board(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    """Leave the board; the owner has to transfer ownership first"""
    await BoardService.leave(db, board_id, current_user.id)


@router.post("/transfer-ownership", response_model=BoardRead)
async def transfer_board_ownership(
    board_id: int,
    request: TransferOwnershipRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    """Transfer ownership of a board to another user (only the owner can do this)"""
    if await SecurityService.get_user_by_id(db, request.new_owner_id) is None:
        raise NotFoundError(f"User {request.new_owner_id} not found")
    return await BoardService.transfer_ownership(
        db=db,
        board_id=board_id,
        current_owner_id=current_user.id,
        new_owner_id=request.new_owner_id,
    )
