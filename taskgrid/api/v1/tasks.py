from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.db.database import get_async_session
from taskgrid.api.dependencies.auth import get_current_user
from taskgrid.api.dependencies.permissions import can_view_board, get_board_access
from taskgrid.models.user import User
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.task import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    TaskCreate,
    TaskMoveRequest,
    TaskRead,
    TaskReorderRequest,
    TaskUpdate,
)
from taskgrid.schemas.view import FillRequest
from taskgrid.services.board_service import BoardService
from taskgrid.services.fill_service import FillService, FillSession
from taskgrid.services.schema_index import SchemaIndex
from taskgrid.services.task_service import TaskService

router = APIRouter(
    prefix="/boards/{board_id}/tasks",
    tags=["tasks"],
)


@router.get("/", response_model=List[TaskRead])
async def list_tasks(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_view_board),
):
    """Tasks in default order; restricted roles only see their own or assigned ones"""
    board = await BoardService.require(db, board_id)
    return await TaskService.list_visible(
        db, board_id, access, current_user.id, SchemaIndex.from_board(board)
    )


@router.post("/", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    board_id: int,
    task_data: TaskCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(get_board_access),
):
    return await TaskService.create(db, board_id, task_data, access, current_user.id)


@router.post("/bulk-delete", response_model=BulkDeleteResponse)
async def bulk_delete_tasks(
    board_id: int,
    request: BulkDeleteRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(get_board_access),
):
    """Delete the selected tasks; nothing is deleted if any of them cannot be"""
    deleted = await TaskService.bulk_delete(db, board_id, request.task_ids, access, current_user.id)
    return BulkDeleteResponse(deleted=deleted)


@router.post("/reorder", response_model=List[TaskRead])
async def reorder_tasks(
    board_id: int,
    request: TaskReorderRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(get_board_access),
):
    return await TaskService.reorder(db, board_id, request.task_ids, access, current_user.id)


@router.post("/fill", response_model=List[TaskRead])
async def fill_tasks(
    board_id: int,
    request: FillRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(get_board_access),
):
    """Commit a drag-fill; the visual order is recomputed from the same view and toolbar state"""
    session = FillSession.start(request.property_id, request.value, request.start_index)
    session = session.extend(request.end_index)
    return await FillService.commit(
        db, board_id, session, access, current_user.id,
        toolbar=request, view_id=request.view_id,
    )


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task(
    board_id: int,
    task_id: int,
    task_data: TaskUpdate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(get_board_access),
):
    return await TaskService.update(db, board_id, task_id, task_data, access, current_user.id)


@router.post("/{task_id}/move", response_model=TaskRead)
async def move_task(
    board_id: int,
    task_id: int,
    request: TaskMoveRequest,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(get_board_access),
):
    """Move a task into another group bucket (kanban column) at a position"""
    return await TaskService.move_to_group(
        db, board_id, task_id, request.property_id, request.target_group_value,
        request.target_index, access, current_user.id,
    )


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    board_id: int,
    task_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(get_board_access),
):
    await TaskService.delete(db, board_id, task_id, access, current_user.id)
