from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.db.database import get_async_session
from taskgrid.api.dependencies.auth import get_current_user
from taskgrid.api.dependencies.permissions import (
    can_delete_board,
    can_edit_board,
    can_view_board,
    get_board_access,
)
from taskgrid.models.user import User
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.board import BoardCreate, BoardRead, BoardSummary, BoardUpdate
from taskgrid.services.audit_service import AuditService
from taskgrid.services.board_service import BoardService

router = APIRouter(
    prefix="/boards",
    tags=["boards"],
)


@router.post("/", response_model=BoardRead, status_code=status.HTTP_201_CREATED)
async def create_board(
    board_data: BoardCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    """Create a new board owned by the current user"""
    return await BoardService.create(db, board_data, current_user.id)


@router.get("/", response_model=List[BoardSummary])
async def list_boards(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    """Boards the current user can open"""
    return await BoardService.list_for_user(db, current_user.id, current_user.role, skip, limit)


@router.get("/{board_id}", response_model=BoardRead)
async def get_board(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    access: AccessResult = Depends(can_view_board),
):
    """Board with its properties and saved views"""
    return await BoardService.require(db, board_id)


@router.get("/{board_id}/access", response_model=AccessResult)
async def get_access(access: AccessResult = Depends(get_board_access)):
    """Capabilities of the current user on the board"""
    return access


@router.patch("/{board_id}", response_model=BoardRead)
async def update_board(
    board_id: int,
    board_data: BoardUpdate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await BoardService.update(db, board_id, board_data, current_user.id)


@router.delete("/{board_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_board(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_delete_board),
):
    await BoardService.delete(db, board_id, current_user.id)


@router.get("/{board_id}/activities")
async def list_activities(
    board_id: int,
    limit: int = 50,
    db: AsyncSession = Depends(get_async_session),
    access: AccessResult = Depends(can_view_board),
):
    """Latest activity feed entries of the board"""
    activities = await AuditService.list_activities(db, board_id, limit)
    return [
        {
            "id": activity.id,
            "type": activity.activity_type,
            "actor_id": activity.actor_id,
            "description": activity.description,
            "metadata": activity.meta,
            "created_at": activity.created_at,
        }
        for activity in activities
    ]
