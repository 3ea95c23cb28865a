"""Drag-fill and bulk selection.

A fill copies one value over a contiguous range of rows *as displayed*,
i.e. over ``ViewResult.visual_order()``, never over the persisted order.
"""
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime

from taskgrid.core.exceptions import ForbiddenError, ValidationError
from taskgrid.logs.debug_log import debug_logger, log_function
from taskgrid.models.audit import ActivityType
from taskgrid.models.task import Task
from taskgrid.schemas.access import AccessResult
from taskgrid.schemas.view import ToolbarState, ViewType
from taskgrid.services.access_service import can_write_task, require_permission
from taskgrid.services.audit_service import AuditService
from taskgrid.services.board_service import BoardService
from taskgrid.services.property_types import validate_value
from taskgrid.services.query_service import apply_view
from taskgrid.services.schema_index import SchemaIndex
from taskgrid.services.task_service import REMOVE, TaskService, merge_values
from taskgrid.services.view_service import ViewService


@dataclass(frozen=True)
class FillSession:
    """State of one drag-fill gesture"""
    property_id: str
    value: Any
    start_index: int
    end_index: Optional[int] = None

    @classmethod
    def start(cls, property_id: str, value: Any, start_index: int) -> "FillSession":
        if start_index < 0:
            raise ValidationError("Fill start index must not be negative")
        return cls(property_id=property_id, value=value, start_index=start_index)

    def extend(self, index: int) -> "FillSession":
        """Pointer moved over another row"""
        if index < 0:
            raise ValidationError("Fill index must not be negative")
        return replace(self, end_index=index)

    @property
    def bounds(self) -> Tuple[int, int]:
        end = self.start_index if self.end_index is None else self.end_index
        return min(self.start_index, end), max(self.start_index, end)


def plan_fill(
    session: FillSession,
    visual_order: Sequence[Any],
    schema: SchemaIndex,
    access: AccessResult,
    user_id: Any,
) -> List[Tuple[Any, Any]]:
    """Writes a committed fill needs, as (task, stored value) pairs.

    Every row in the inclusive range is checked before anything is written:
    one row outside the requester's edit scope rejects the whole fill.
    Rows already holding the value are skipped. A None value clears the cell.
    """
    require_permission(access, "can_edit_tasks")
    prop = schema.get(session.property_id)
    if prop is None:
        raise ValidationError(f"Unknown property {session.property_id}")
    value = REMOVE if session.value is None else validate_value(prop, session.value)

    low, high = session.bounds
    if high >= len(visual_order):
        raise ValidationError(
            f"Fill range {low}..{high} is outside the {len(visual_order)} displayed rows"
        )
    rows = list(visual_order[low:high + 1])

    denied = [row.id for row in rows if not can_write_task(access, row, user_id, schema)]
    if denied:
        raise ForbiddenError("Fill range includes tasks you cannot edit", details={"task_ids": denied})

    writes = []
    for row in rows:
        current = (row.properties or {}).get(prop.id, REMOVE)
        if current == value or (value is REMOVE and current is REMOVE):
            continue
        writes.append((row, value))
    return writes


class BulkSelection:
    """Selected task ids, kept independently of search, filters and sorts"""

    def __init__(self, task_ids: Iterable[int] = ()):
        self._ids: Dict[int, None] = dict.fromkeys(task_ids)

    def __contains__(self, task_id: int) -> bool:
        return task_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> List[int]:
        return list(self._ids)

    def select(self, task_id: int) -> None:
        self._ids.setdefault(task_id, None)

    def deselect(self, task_id: int) -> None:
        self._ids.pop(task_id, None)

    def toggle(self, task_id: int) -> bool:
        if task_id in self._ids:
            self.deselect(task_id)
            return False
        self.select(task_id)
        return True

    def select_all(self, task_ids: Iterable[int]) -> None:
        for task_id in task_ids:
            self.select(task_id)

    def clear(self) -> None:
        self._ids.clear()

    async def delete(self, deleter: Callable[[List[int]], Awaitable[int]]) -> int:
        """Delete the selection; it is cleared on success and kept if deleter raises"""
        if not self._ids:
            return 0
        deleted = await deleter(self.ids)
        self.clear()
        return deleted


class FillService:
    """Applies a fill against the store"""

    @staticmethod
    @log_function()
    async def commit(
        db: AsyncSession,
        board_id: int,
        session: FillSession,
        access: AccessResult,
        user_id: int,
        toolbar: Optional[ToolbarState] = None,
        view_id: Optional[str] = None,
    ) -> List[Task]:
        """Recompute the visual order the requester sees and fill over it"""
        board = await BoardService.require(db, board_id)
        schema = SchemaIndex.from_board(board)
        view = ViewService.find(board, view_id)
        tasks = await TaskService.list_visible(db, board_id, access, user_id, schema)

        result = apply_view(
            tasks,
            schema,
            view.config if view else None,
            toolbar,
            view_type=view.type if view else ViewType.TABLE,
        )
        writes = plan_fill(session, result.visual_order(), schema, access, user_id)
        if not writes:
            return []

        try:
            current_time = datetime.utcnow().replace(tzinfo=None)
            for task, value in writes:
                task.properties = merge_values(task.properties, {session.property_id: value})
                task.updated_at = current_time
            await AuditService.record_activity(
                db, board_id, ActivityType.TASKS_FILLED, user_id,
                f"Filled {len(writes)} tasks",
                {"property_id": session.property_id, "task_ids": [task.id for task, _ in writes]},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        debug_logger.debug(f"Board {board_id}: filled {len(writes)} tasks on {session.property_id}")
        return [task for task, _ in writes]
