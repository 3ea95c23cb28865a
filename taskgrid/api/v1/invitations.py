from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.db.database import get_async_session
from taskgrid.api.dependencies.auth import get_current_user
from taskgrid.api.dependencies.permissions import can_manage_members
from taskgrid.models.user import User
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.board_permissions import InvitationCreate, InvitationRead, InvitationRespond
from taskgrid.services.invitation_service import InvitationService

board_invitations_router = APIRouter(
    prefix="/boards/{board_id}/invitations",
    tags=["invitations"],
)

router = APIRouter(
    prefix="/invitations",
    tags=["invitations"],
)


@board_invitations_router.post("/", response_model=InvitationRead, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    board_id: int,
    request: InvitationCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_manage_members),
):
    return await InvitationService.create(db, board_id, request, access, current_user.id)


@board_invitations_router.get("/", response_model=List[InvitationRead])
async def list_board_invitations(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    access: AccessResult = Depends(can_manage_members),
):
    """Pending invitations of the board"""
    return await InvitationService.list_for_board(db, board_id)


@board_invitations_router.delete("/{invitation_id}", response_model=InvitationRead)
async def cancel_invitation(
    board_id: int,
    invitation_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_manage_members),
):
    return await InvitationService.cancel(db, board_id, invitation_id, current_user.id)


@router.get("/", response_model=List[InvitationRead])
async def my_invitations(
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    """Pending invitations addressed to the current user"""
    return await InvitationService.list_for_user(db, current_user)


@router.post("/{invitation_id}/respond", response_model=InvitationRead)
async def respond_to_invitation(
    invitation_id: int,
    request: InvitationRespond,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    return await InvitationService.respond(db, invitation_id, current_user, request.accept)
