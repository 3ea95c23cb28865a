from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from datetime import datetime

from taskgrid.core.exceptions import NotFoundError, ValidationError
from taskgrid.logs.debug_log import debug_logger, log_function
from taskgrid.models.audit import ActivityType, AuditAction
from taskgrid.models.task import Task
from taskgrid.schemas.access import AccessResult, Scope
from taskgrid.schemas.property import Property
from taskgrid.schemas.task import TaskCreate, TaskUpdate
from taskgrid.services.access_service import (
    can_view_task,
    can_write_task,
    require_permission,
    require_task_delete,
    require_task_write,
)
from taskgrid.services.audit_service import AuditService
from taskgrid.services.board_service import BoardService
from taskgrid.services.property_types import as_id_list, behavior_for, first_value, validate_value
from taskgrid.services.schema_index import SchemaIndex

# Marker for "remove this key" in planned property changes
REMOVE = object()


def _now():
    return datetime.utcnow().replace(tzinfo=None)


def prepare_values(schema: SchemaIndex, values: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a property patch; None values become REMOVE.

    Raises before anything is applied when any entry is invalid.
    """
    prepared = {}
    for property_id, value in (values or {}).items():
        prop = schema.get(property_id)
        if prop is None:
            raise ValidationError(f"Unknown property {property_id}")
        prepared[property_id] = REMOVE if value is None else validate_value(prop, value)
    return prepared


def merge_values(current: Optional[Dict[str, Any]], patch: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(current or {})
    for property_id, value in patch.items():
        if value is REMOVE:
            merged.pop(property_id, None)
        else:
            merged[property_id] = value
    return merged


def plan_reorder(tasks: Sequence[Any], task_ids: Sequence[int]) -> Dict[int, int]:
    """New order of every task after placing ``task_ids`` in the given sequence.

    ``task_ids`` may be a subset (e.g. the rows of a filtered table): they keep
    the slots they occupy in the current order and are permuted among them.
    Orders are renumbered 0..n-1. Returns only the tasks whose order changes.
    """
    if len(set(task_ids)) != len(task_ids):
        raise ValidationError("Reorder contains duplicate task ids")
    ordered = sorted(tasks, key=lambda task: (task.order or 0, task.id))
    by_id = {task.id: task for task in ordered}
    missing = [task_id for task_id in task_ids if task_id not in by_id]
    if missing:
        raise NotFoundError(f"Tasks not found on this board: {missing}")

    moving = set(task_ids)
    incoming = iter(task_ids)
    sequence = [next(incoming) if task.id in moving else task.id for task in ordered]
    return {
        task_id: index
        for index, task_id in enumerate(sequence)
        if by_id[task_id].order != index
    }


def _bucket_key(prop: Property, value: Any) -> Optional[str]:
    """Bucket of a value; stale option ids fall into the "no value" bucket"""
    key = first_value(value)
    if key is not None and behavior_for(prop.type).group_strategy == "options":
        if key not in prop.option_ids():
            return None
    return key


def plan_move(
    tasks: Sequence[Any],
    task: Any,
    prop: Property,
    target_value: Optional[str],
    target_index: int,
    movable: Optional[Callable[[Any], bool]] = None,
) -> Tuple[Any, Dict[int, int]]:
    """Plan moving ``task`` into the bucket ``target_value`` of ``prop``.

    Returns the task's new value for ``prop`` (REMOVE for the "no value"
    bucket) and the new orders of the target bucket, numbered 0..n-1 with
    the task at ``target_index``.

    With ``movable``, only the bucket members it accepts are renumbered:
    they and the task share the order slots they already hold, and
    ``target_index`` counts among them.
    """
    behavior = behavior_for(prop.type)
    if not behavior.groupable:
        raise ValidationError(f"Property '{prop.name}' of type {prop.type.value} is not groupable")

    current = (task.properties or {}).get(prop.id)
    if target_value is None:
        new_value = REMOVE
    else:
        target_value = str(target_value)
        if behavior.group_strategy == "options" and target_value not in prop.option_ids():
            raise ValidationError(f"Unknown option {target_value} for property '{prop.name}'")
        if behavior.list_valued or isinstance(current, list):
            rest = [item for item in as_id_list(current) if item != target_value]
            new_value = [target_value] + rest
        else:
            new_value = target_value

    bucket = [
        other for other in tasks
        if other.id != task.id
        and _bucket_key(prop, (other.properties or {}).get(prop.id)) == target_value
    ]
    if movable is not None:
        bucket = [other for other in bucket if movable(other)]
    bucket.sort(key=lambda other: (other.order or 0, other.id))
    bucket.insert(min(target_index, len(bucket)), task)
    if movable is not None:
        slots = sorted(member.order or 0 for member in bucket)
        return new_value, {member.id: slot for member, slot in zip(bucket, slots)}
    return new_value, {member.id: index for index, member in enumerate(bucket)}


class TaskService:
    """Record store for board tasks"""

    @staticmethod
    async def list_for_board(db: AsyncSession, board_id: int) -> List[Task]:
        query = select(Task).where(Task.board_id == board_id).order_by(Task.order, Task.id)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def list_visible(
        db: AsyncSession, board_id: int, access: AccessResult, user_id: int, schema: SchemaIndex
    ) -> List[Task]:
        """Tasks the requester may see; restricted roles only get their own/assigned ones"""
        require_permission(access, "can_view_board")
        tasks = await TaskService.list_for_board(db, board_id)
        return [task for task in tasks if can_view_task(access, task, user_id, schema)]

    @staticmethod
    async def get_by_id(db: AsyncSession, task_id: int, board_id: Optional[int] = None) -> Optional[Task]:
        query = select(Task).where(Task.id == task_id)
        if board_id is not None:
            query = query.where(Task.board_id == board_id)
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def require(db: AsyncSession, task_id: int, board_id: Optional[int] = None) -> Task:
        task = await TaskService.get_by_id(db, task_id, board_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    @staticmethod
    @log_function()
    async def create(
        db: AsyncSession,
        board_id: int,
        data: TaskCreate,
        access: AccessResult,
        user_id: int,
    ) -> Task:
        """Create a task at the end of the board (order = max + 1, or 0)"""
        require_permission(access, "can_create_tasks")
        board = await BoardService.require(db, board_id)
        values = merge_values({}, prepare_values(SchemaIndex.from_board(board), data.properties))

        query = select(func.max(Task.order)).where(Task.board_id == board_id)
        result = await db.execute(query)
        max_order = result.scalar()
        order = 0 if max_order is None else max_order + 1

        task = Task(
            board_id=board_id,
            title=data.title,
            order=order,
            properties=values,
            created_by=user_id,
        )
        db.add(task)
        await db.flush()
        await AuditService.record_activity(
            db, board_id, ActivityType.TASK_CREATED, user_id,
            f"Task '{task.title}' created", {"task_id": task.id},
        )
        await db.commit()
        await db.refresh(task)
        return task

    @staticmethod
    @log_function()
    async def update(
        db: AsyncSession,
        board_id: int,
        task_id: int,
        data: TaskUpdate,
        access: AccessResult,
        user_id: int,
    ) -> Task:
        """Update the title and merge a property patch; null values remove keys"""
        board = await BoardService.require(db, board_id)
        schema = SchemaIndex.from_board(board)
        task = await TaskService.require(db, task_id, board_id)
        require_task_write(access, task, user_id, schema)

        patch = prepare_values(schema, data.properties or {})
        if data.title is not None:
            task.title = data.title
        if patch:
            task.properties = merge_values(task.properties, patch)
        task.updated_at = _now()

        await AuditService.record_activity(
            db, board_id, ActivityType.TASK_UPDATED, user_id,
            f"Task '{task.title}' updated", {"task_id": task.id, "properties": list(patch)},
        )
        await db.commit()
        await db.refresh(task)
        return task

    @staticmethod
    async def delete(
        db: AsyncSession, board_id: int, task_id: int, access: AccessResult, user_id: int
    ) -> bool:
        board = await BoardService.require(db, board_id)
        task = await TaskService.require(db, task_id, board_id)
        require_task_delete(access, task, user_id, SchemaIndex.from_board(board))

        await db.delete(task)
        await AuditService.record_audit(
            db, AuditAction.TASK_DELETED, "task", task_id, user_id, {"board_id": board_id}
        )
        await AuditService.record_activity(
            db, board_id, ActivityType.TASK_DELETED, user_id,
            f"Task '{task.title}' deleted", {"task_id": task_id},
        )
        await db.commit()
        return True

    @staticmethod
    @log_function()
    async def bulk_delete(
        db: AsyncSession,
        board_id: int,
        task_ids: Iterable[int],
        access: AccessResult,
        user_id: int,
    ) -> int:
        """Delete exactly ``task_ids`` in one statement, or nothing at all"""
        ids = list(dict.fromkeys(task_ids))
        if not ids:
            return 0
        board = await BoardService.require(db, board_id)
        schema = SchemaIndex.from_board(board)

        result = await db.execute(select(Task).where(Task.board_id == board_id, Task.id.in_(ids)))
        tasks = list(result.scalars().all())
        found = {task.id for task in tasks}
        missing = [task_id for task_id in ids if task_id not in found]
        if missing:
            raise NotFoundError(f"Tasks not found on this board: {missing}")
        for task in tasks:
            require_task_delete(access, task, user_id, schema)

        stmt = delete(Task).where(Task.board_id == board_id, Task.id.in_(ids))
        result = await db.execute(stmt)
        await AuditService.record_audit(
            db, AuditAction.TASKS_BULK_DELETED, "board", board_id, user_id, {"task_ids": ids}
        )
        await db.commit()
        debug_logger.debug(f"Board {board_id}: bulk-deleted {result.rowcount} tasks")
        return result.rowcount

    @staticmethod
    @log_function()
    async def reorder(
        db: AsyncSession,
        board_id: int,
        task_ids: Sequence[int],
        access: AccessResult,
        user_id: int,
    ) -> List[Task]:
        """Apply a new task order as one unit.

        Every task whose order changes must be writable by the requester;
        nothing is renumbered otherwise.
        """
        require_permission(access, "can_edit_tasks")
        board = await BoardService.require(db, board_id)
        schema = SchemaIndex.from_board(board)
        tasks = await TaskService.list_for_board(db, board_id)
        changes = plan_reorder(tasks, task_ids)
        for task in tasks:
            if task.id in changes:
                require_task_write(access, task, user_id, schema)

        if not changes:
            return tasks

        try:
            current_time = _now()
            for task in tasks:
                if task.id in changes:
                    task.order = changes[task.id]
                    task.updated_at = current_time
            await AuditService.record_activity(
                db, board_id, ActivityType.TASKS_REORDERED, user_id,
                f"{len(changes)} tasks reordered", {"task_ids": list(task_ids)},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return sorted(tasks, key=lambda task: (task.order, task.id))

    @staticmethod
    @log_function()
    async def move_to_group(
        db: AsyncSession,
        board_id: int,
        task_id: int,
        property_id: str,
        target_value: Optional[str],
        target_index: int,
        access: AccessResult,
        user_id: int,
    ) -> Task:
        """Move a task into a group bucket at a position, atomically"""
        board = await BoardService.require(db, board_id)
        schema = SchemaIndex.from_board(board)
        prop = schema.require(property_id)
        tasks = await TaskService.list_for_board(db, board_id)
        task = next((candidate for candidate in tasks if candidate.id == task_id), None)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        require_task_write(access, task, user_id, schema)

        movable = None
        if access.permissions.edit_scope == Scope.ASSIGNED:
            def movable(other):
                return can_write_task(access, other, user_id, schema)
        new_value, orders = plan_move(tasks, task, prop, target_value, target_index, movable)
        shifted = [
            other for other in tasks
            if other.id != task.id and other.id in orders and other.order != orders[other.id]
        ]
        for other in shifted:
            require_task_write(access, other, user_id, schema)

        try:
            current_time = _now()
            task.properties = merge_values(task.properties, {prop.id: new_value})
            task.order = orders[task.id]
            task.updated_at = current_time
            for other in shifted:
                other.order = orders[other.id]
                other.updated_at = current_time
            await AuditService.record_activity(
                db, board_id, ActivityType.TASK_MOVED, user_id,
                f"Task '{task.title}' moved", {
                    "task_id": task.id,
                    "property_id": prop.id,
                    "to": target_value,
                    "index": target_index,
                },
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await db.refresh(task)
        return task
