from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.db.database import get_async_session
from taskgrid.api.dependencies.auth import get_current_user
from taskgrid.api.dependencies.permissions import can_edit_board, can_view_board
from taskgrid.models.user import User
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.property import (
    Property,
    PropertyCreate,
    PropertyOption,
    PropertyOptionCreate,
    PropertyOptionUpdate,
    PropertyUpdate,
    ReorderRequest,
)
from taskgrid.services.property_service import PropertyService

router = APIRouter(
    prefix="/boards/{board_id}/properties",
    tags=["properties"],
)


@router.get("/", response_model=List[Property])
async def list_properties(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    access: AccessResult = Depends(can_view_board),
):
    return await PropertyService.list_properties(db, board_id)


@router.post("/", response_model=Property, status_code=status.HTTP_201_CREATED)
async def add_property(
    board_id: int,
    property_data: PropertyCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    """Add a column, at the end or at insert_index"""
    return await PropertyService.add(db, board_id, property_data, current_user.id)


@router.post("/reorder", response_model=List[Property])
async def reorder_properties(
    board_id: int,
    request: ReorderRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await PropertyService.reorder(
        db, board_id, request.old_index, request.new_index, current_user.id
    )


@router.patch("/{property_id}", response_model=Property)
async def update_property(
    board_id: int,
    property_id: str,
    property_data: PropertyUpdate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    """Rename, resize or toggle required"""
    return await PropertyService.update(db, board_id, property_id, property_data, current_user.id)


@router.delete("/{property_id}", response_model=List[Property])
async def remove_property(
    board_id: int,
    property_id: str,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await PropertyService.remove(db, board_id, property_id, current_user.id)


@router.post("/{property_id}/options", response_model=PropertyOption, status_code=status.HTTP_201_CREATED)
async def add_option(
    board_id: int,
    property_id: str,
    option_data: PropertyOptionCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await PropertyService.add_option(db, board_id, property_id, option_data, current_user.id)


@router.post("/{property_id}/options/reorder", response_model=Property)
async def reorder_options(
    board_id: int,
    property_id: str,
    request: ReorderRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await PropertyService.reorder_options(
        db, board_id, property_id, request.old_index, request.new_index, current_user.id
    )


@router.patch("/{property_id}/options/{option_id}", response_model=Property)
async def update_option(
    board_id: int,
    property_id: str,
    option_id: str,
    option_data: PropertyOptionUpdate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await PropertyService.update_option(
        db, board_id, property_id, option_id, option_data, current_user.id
    )


@router.delete("/{property_id}/options/{option_id}", response_model=Property)
async def remove_option(
    board_id: int,
    property_id: str,
    option_id: str,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    """Remove an option; tasks still holding it show it as unknown"""
    return await PropertyService.remove_option(db, board_id, property_id, option_id, current_user.id)
