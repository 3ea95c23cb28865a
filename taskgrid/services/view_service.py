from typing import List, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.core.exceptions import NotFoundError, ValidationError
from taskgrid.models.audit import AuditAction
from taskgrid.models.board import Board
from taskgrid.schemas.view import View, ViewConfig, ViewCreate, ViewUpdate
from taskgrid.services.aggregation_service import check_aggregation
from taskgrid.services.audit_service import AuditService
from taskgrid.services.board_service import BoardService
from taskgrid.services.property_types import behavior_for
from taskgrid.services.schema_index import SchemaIndex


def check_view_config(config: ViewConfig, schema: SchemaIndex) -> None:
    """groupBy must name an existing groupable property, aggregations must fit their column"""
    for aggregation in config.aggregations or []:
        prop = schema.get(aggregation.property_id)
        if prop is None:
            raise ValidationError(f"Aggregation references unknown property {aggregation.property_id}")
        check_aggregation(prop, aggregation.aggregation_type)
    if config.group_by is None:
        return
    prop = schema.get(config.group_by)
    if prop is None:
        raise ValidationError(f"groupBy references unknown property {config.group_by}")
    if not behavior_for(prop.type).groupable:
        raise ValidationError(
            f"Property '{prop.name}' of type {prop.type.value} cannot be used for grouping"
        )


def _with_default(views: List[View], default_id: Optional[str]) -> List[View]:
    """Exactly one default view: default_id, or the first view when unset"""
    if not views:
        return views
    if default_id is None:
        default_id = next((view.id for view in views if view.is_default), views[0].id)
    return [view.model_copy(update={"is_default": view.id == default_id}) for view in views]


class ViewService:
    """Saved views of a board, stored as JSON on the board row"""

    @staticmethod
    def load(board: Board) -> List[View]:
        return [View.model_validate(view) for view in board.views or []]

    @staticmethod
    def find(board: Board, view_id: Optional[str] = None) -> Optional[View]:
        """View by id, or the board's default view when view_id is None"""
        views = ViewService.load(board)
        if view_id is None:
            return next((view for view in views if view.is_default), views[0] if views else None)
        for view in views:
            if view.id == view_id:
                return view
        raise NotFoundError(f"View {view_id} not found")

    @staticmethod
    async def _save(
        db: AsyncSession, board: Board, views: List[View], actor_id, action: AuditAction, view_id: str
    ) -> List[View]:
        board.views = [view.to_json() for view in views]
        board.updated_at = datetime.utcnow().replace(tzinfo=None)
        await AuditService.record_audit(
            db, action, "view", view_id, actor_id, {"board_id": board.id}
        )
        await db.commit()
        await db.refresh(board)
        return ViewService.load(board)

    @staticmethod
    async def list_views(db: AsyncSession, board_id: int) -> List[View]:
        board = await BoardService.require(db, board_id)
        return ViewService.load(board)

    @staticmethod
    async def create(
        db: AsyncSession, board_id: int, data: ViewCreate, actor_id: Optional[int] = None
    ) -> View:
        board = await BoardService.require(db, board_id)
        check_view_config(data.config, SchemaIndex.from_board(board))

        view = View(name=data.name, type=data.type, is_default=data.is_default, config=data.config)
        views = ViewService.load(board) + [view]
        views = _with_default(views, view.id if data.is_default else None)
        await ViewService._save(db, board, views, actor_id, AuditAction.VIEW_CREATED, view.id)
        return ViewService.find(board, view.id)

    @staticmethod
    async def update(
        db: AsyncSession,
        board_id: int,
        view_id: str,
        data: ViewUpdate,
        actor_id: Optional[int] = None,
    ) -> View:
        board = await BoardService.require(db, board_id)
        current = ViewService.find(board, view_id)
        if data.config is not None:
            check_view_config(data.config, SchemaIndex.from_board(board))

        changes = {}
        if data.name is not None:
            changes["name"] = data.name
        if data.config is not None:
            changes["config"] = data.config
        updated = current.model_copy(update=changes)

        views = [updated if view.id == view_id else view for view in ViewService.load(board)]
        default_id = view_id if data.is_default else None
        if data.is_default is False and current.is_default:
            # Unsetting the default hands it to the first other view
            others = [view.id for view in views if view.id != view_id]
            default_id = others[0] if others else view_id
        views = _with_default(views, default_id)
        await ViewService._save(db, board, views, actor_id, AuditAction.VIEW_UPDATED, view_id)
        return ViewService.find(board, view_id)

    @staticmethod
    async def set_default(
        db: AsyncSession, board_id: int, view_id: str, actor_id: Optional[int] = None
    ) -> View:
        board = await BoardService.require(db, board_id)
        ViewService.find(board, view_id)
        views = _with_default(ViewService.load(board), view_id)
        await ViewService._save(db, board, views, actor_id, AuditAction.VIEW_UPDATED, view_id)
        return ViewService.find(board, view_id)

    @staticmethod
    async def delete(
        db: AsyncSession, board_id: int, view_id: str, actor_id: Optional[int] = None
    ) -> List[View]:
        board = await BoardService.require(db, board_id)
        ViewService.find(board, view_id)
        views = [view for view in ViewService.load(board) if view.id != view_id]
        if not views:
            raise ValidationError("A board must keep at least one view")
        views = _with_default(views, None)
        return await ViewService._save(db, board, views, actor_id, AuditAction.VIEW_DELETED, view_id)
