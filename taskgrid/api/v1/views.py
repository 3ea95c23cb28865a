from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.db.database import get_async_session
from taskgrid.api.dependencies.auth import get_current_user
from taskgrid.api.dependencies.permissions import can_edit_board, can_view_board
from taskgrid.models.user import User
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.task import TaskRead
from taskgrid.schemas.view import (
    AggregateResponse,
    GroupBucketResponse,
    View,
    ViewCreate,
    ViewQuery,
    ViewResultResponse,
    ViewType,
    ViewUpdate,
)
from taskgrid.services.board_service import BoardService
from taskgrid.services.query_service import apply_view
from taskgrid.services.schema_index import SchemaIndex
from taskgrid.services.task_service import TaskService
from taskgrid.services.view_service import ViewService

router = APIRouter(
    prefix="/boards/{board_id}/views",
    tags=["views"],
)


@router.get("/", response_model=List[View])
async def list_views(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    access: AccessResult = Depends(can_view_board),
):
    return await ViewService.list_views(db, board_id)


@router.post("/", response_model=View, status_code=status.HTTP_201_CREATED)
async def create_view(
    board_id: int,
    view_data: ViewCreate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await ViewService.create(db, board_id, view_data, current_user.id)


@router.post("/query", response_model=ViewResultResponse)
async def query_view(
    board_id: int,
    query: ViewQuery,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_view_board),
):
    """Run a saved view (the default one without viewId) with search, filters and sorts"""
    board = await BoardService.require(db, board_id)
    schema = SchemaIndex.from_board(board)
    view = ViewService.find(board, query.view_id)
    tasks = await TaskService.list_visible(db, board_id, access, current_user.id, schema)

    members = await BoardService.list_members(db, board_id)
    result = apply_view(
        tasks,
        schema,
        view.config if view else None,
        query,
        view_type=view.type if view else ViewType.TABLE,
        user_ids=[member.user_id for member in members],
    )

    response = ViewResultResponse(
        view_id=view.id if view else None,
        total=len(result.tasks),
        visible_properties=result.visible_properties,
        aggregates={
            property_id: AggregateResponse(**aggregate)
            for property_id, aggregate in result.aggregates.items()
        },
    )
    if result.groups is None:
        response.tasks = [TaskRead.model_validate(task) for task in result.tasks]
    else:
        response.groups = [
            GroupBucketResponse(
                key=bucket.key,
                label=bucket.label,
                color=bucket.color,
                tasks=[TaskRead.model_validate(task) for task in bucket.tasks],
            )
            for bucket in result.groups
        ]
    return response


@router.patch("/{view_id}", response_model=View)
async def update_view(
    board_id: int,
    view_id: str,
    view_data: ViewUpdate,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await ViewService.update(db, board_id, view_id, view_data, current_user.id)


@router.post("/{view_id}/default", response_model=View)
async def set_default_view(
    board_id: int,
    view_id: str,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await ViewService.set_default(db, board_id, view_id, current_user.id)


@router.delete("/{view_id}", response_model=List[View])
async def delete_view(
    board_id: int,
    view_id: str,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    access: AccessResult = Depends(can_edit_board),
):
    return await ViewService.delete(db, board_id, view_id, current_user.id)
