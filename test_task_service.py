import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from taskgrid.models.board import Board, BoardVisibility
from taskgrid.models.task import Task
from taskgrid.schemas.property import Property, PropertyOption, PropertyType
from taskgrid.schemas.task import TaskCreate, TaskUpdate
from taskgrid.services.access_service import resolve_access
from taskgrid.services.schema_index import SchemaIndex
from taskgrid.services.task_service import (
    REMOVE,
    TaskService,
    merge_values,
    plan_move,
    plan_reorder,
    prepare_values,
)

STATUS = Property(id="status", name="Status", type=PropertyType.STATUS, order=0, options=[
    PropertyOption(id="todo", label="To Do"),
    PropertyOption(id="done", label="Done"),
])
TAGS = Property(id="tags", name="Tags", type=PropertyType.MULTI_SELECT, order=1, options=[
    PropertyOption(id="a", label="A"),
    PropertyOption(id="b", label="B"),
])
NOTES = Property(id="notes", name="Notes", type=PropertyType.TEXT, order=2)


def make_task(task_id, order, created_by=7, **properties):
    return Task(id=task_id, board_id=1, title=f"Task {task_id}", order=order,
                properties=properties, created_by=created_by)


def make_board():
    return Board(
        id=1,
        name="Sprint",
        owner_id=1,
        visibility=BoardVisibility.PRIVATE,
        properties=[prop.model_dump(mode="json") for prop in (STATUS, TAGS, NOTES)],
        views=[],
    )


def access_for(role):
    return resolve_access(make_board(), 7, member_role=role, system_admin_role="admin")


class TestPrepareValues:
    def setup_method(self):
        self.schema = SchemaIndex([STATUS, TAGS, NOTES])

    def test_valid_patch(self):
        prepared = prepare_values(self.schema, {"status": "todo", "notes": "hi", "tags": None})
        assert prepared["status"] == "todo"
        assert prepared["notes"] == "hi"
        assert prepared["tags"] is REMOVE

    def test_unknown_property(self):
        with pytest.raises(ValidationError):
            prepare_values(self.schema, {"priority": "high"})

    def test_invalid_value(self):
        with pytest.raises(ValidationError):
            prepare_values(self.schema, {"status": "todo", "tags": "a"})

    def test_merge_values(self):
        merged = merge_values({"status": "todo", "notes": "x"}, {"status": REMOVE, "tags": ["a"]})
        assert merged == {"notes": "x", "tags": ["a"]}


class TestPlanReorder:
    """New task orders from a dragged row sequence"""

    def test_full_reorder(self):
        tasks = [make_task(1, 0), make_task(2, 1), make_task(3, 2)]
        assert plan_reorder(tasks, [3, 1, 2]) == {3: 0, 1: 1, 2: 2}

    def test_subset_keeps_other_tasks_in_place(self):
        tasks = [make_task(1, 0), make_task(2, 1), make_task(3, 2), make_task(4, 3)]
        assert plan_reorder(tasks, [3, 1]) == {3: 0, 1: 2}

    def test_orders_are_renumbered(self):
        tasks = [make_task(1, 0), make_task(2, 5), make_task(3, 10)]
        assert plan_reorder(tasks, [1, 2, 3]) == {2: 1, 3: 2}

    def test_duplicates(self):
        with pytest.raises(ValidationError):
            plan_reorder([make_task(1, 0), make_task(2, 1)], [1, 1])

    def test_unknown_task(self):
        with pytest.raises(NotFoundError):
            plan_reorder([make_task(1, 0)], [1, 2])


class TestPlanMove:
    """Moving a task between group buckets"""

    def test_move_into_another_bucket(self):
        tasks = [make_task(1, 0, status="todo"), make_task(2, 1, status="todo"), make_task(3, 2, status="done")]
        value, orders = plan_move(tasks, tasks[2], STATUS, "todo", 1)
        assert value == "todo"
        assert orders == {1: 0, 3: 1, 2: 2}

    def test_index_past_the_end_appends(self):
        tasks = [make_task(1, 0, status="todo"), make_task(2, 1, status="done")]
        value, orders = plan_move(tasks, tasks[1], STATUS, "todo", 50)
        assert orders == {1: 0, 2: 1}

    def test_move_to_no_value_bucket(self):
        tasks = [make_task(1, 0, status="todo"), make_task(2, 1, status="archived"), make_task(3, 2)]
        value, orders = plan_move(tasks, tasks[0], STATUS, None, 0)
        assert value is REMOVE
        assert orders == {1: 0, 2: 1, 3: 2}

    def test_only_movable_tasks_are_renumbered(self):
        tasks = [
            make_task(1, 0, created_by=99, status="todo"),
            make_task(2, 3, status="todo"),
            make_task(3, 5, status="done"),
        ]
        value, orders = plan_move(tasks, tasks[2], STATUS, "todo", 0, lambda task: task.created_by == 7)
        assert value == "todo"
        assert orders == {3: 3, 2: 5}

    def test_multi_select_target_becomes_first_value(self):
        tasks = [make_task(1, 0, tags=["a", "b"])]
        value, _ = plan_move(tasks, tasks[0], TAGS, "b", 0)
        assert value == ["b", "a"]

    def test_unknown_target_option(self):
        tasks = [make_task(1, 0, status="todo")]
        with pytest.raises(ValidationError):
            plan_move(tasks, tasks[0], STATUS, "archived", 0)

    def test_property_must_be_groupable(self):
        tasks = [make_task(1, 0)]
        with pytest.raises(ValidationError):
            plan_move(tasks, tasks[0], NOTES, "x", 0)


class TestTaskService:
    """Task store operations with a mocked session"""

    def setup_method(self):
        self.mock_db = AsyncMock(spec=AsyncSession)
        self.board = make_board()

    @pytest.mark.asyncio
    async def test_create_appends_after_highest_order(self):
        mock_result = MagicMock()
        mock_result.scalar.return_value = 4
        self.mock_db.execute.return_value = mock_result

        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch('taskgrid.services.task_service.AuditService.record_activity'):
            task = await TaskService.create(
                self.mock_db, 1, TaskCreate(title="Write docs", properties={"status": "todo"}),
                access_for("editor"), 7,
            )

        assert task.order == 5
        assert task.properties == {"status": "todo"}
        assert task.created_by == 7
        self.mock_db.add.assert_called_once_with(task)
        self.mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_first_task_gets_order_zero(self):
        mock_result = MagicMock()
        mock_result.scalar.return_value = None
        self.mock_db.execute.return_value = mock_result

        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch('taskgrid.services.task_service.AuditService.record_activity'):
            task = await TaskService.create(self.mock_db, 1, TaskCreate(title="First"), access_for("editor"), 7)

        assert task.order == 0

    @pytest.mark.asyncio
    async def test_viewer_cannot_create(self):
        with pytest.raises(ForbiddenError):
            await TaskService.create(self.mock_db, 1, TaskCreate(title="Nope"), access_for("viewer"), 7)
        self.mock_db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_merges_and_removes_values(self):
        task = make_task(1, 0, status="todo", notes="old")
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch('taskgrid.services.task_service.TaskService.require', return_value=task), \
                patch('taskgrid.services.task_service.AuditService.record_activity'):
            updated = await TaskService.update(
                self.mock_db, 1, 1, TaskUpdate(title="New", properties={"status": None, "tags": ["a"]}),
                access_for("editor"), 7,
            )

        assert updated.title == "New"
        assert updated.properties == {"notes": "old", "tags": ["a"]}
        self.mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_patch_without_changes(self):
        task = make_task(1, 0, status="todo")
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch('taskgrid.services.task_service.TaskService.require', return_value=task):
            with pytest.raises(ValidationError):
                await TaskService.update(
                    self.mock_db, 1, 1, TaskUpdate(properties={"status": "done", "tags": "a"}),
                    access_for("editor"), 7,
                )

        assert task.properties == {"status": "todo"}
        self.mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bulk_delete_rejects_missing_ids(self):
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = [make_task(1, 0)]
        self.mock_db.execute.return_value = mock_result

        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board):
            with pytest.raises(NotFoundError):
                await TaskService.bulk_delete(self.mock_db, 1, [1, 2], access_for("editor"), 7)

        self.mock_db.execute.assert_awaited_once()
        self.mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bulk_delete_in_one_statement(self):
        select_result = MagicMock()
        select_result.scalars.return_value.all.return_value = [make_task(1, 0), make_task(2, 1)]
        delete_result = MagicMock()
        delete_result.rowcount = 2
        self.mock_db.execute.side_effect = [select_result, delete_result]

        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch('taskgrid.services.task_service.AuditService.record_audit'):
            deleted = await TaskService.bulk_delete(self.mock_db, 1, [1, 2, 1], access_for("editor"), 7)

        assert deleted == 2
        assert self.mock_db.execute.await_count == 2
        self.mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bulk_delete_needs_delete_permission(self):
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = [make_task(1, 0)]
        self.mock_db.execute.return_value = mock_result

        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board):
            with pytest.raises(ForbiddenError):
                await TaskService.bulk_delete(self.mock_db, 1, [1], access_for("restricted_editor"), 7)

        self.mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reorder(self):
        tasks = [make_task(1, 0), make_task(2, 1), make_task(3, 2)]
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch.object(TaskService, 'list_for_board', new=AsyncMock(return_value=tasks)), \
                patch('taskgrid.services.task_service.AuditService.record_activity') as mock_activity:
            result = await TaskService.reorder(self.mock_db, 1, [3, 1, 2], access_for("editor"), 7)

        assert [task.id for task in result] == [3, 1, 2]
        assert [task.order for task in result] == [0, 1, 2]
        mock_activity.assert_awaited_once()
        self.mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_restricted_editor_cannot_reorder_other_tasks(self):
        tasks = [make_task(1, 0, created_by=99), make_task(2, 1, created_by=99), make_task(3, 2, created_by=99)]
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch.object(TaskService, 'list_for_board', new=AsyncMock(return_value=tasks)):
            with pytest.raises(ForbiddenError):
                await TaskService.reorder(self.mock_db, 1, [3, 2, 1], access_for("restricted_editor"), 7)

        assert [task.order for task in tasks] == [0, 1, 2]
        self.mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restricted_editor_reorders_own_tasks(self):
        tasks = [make_task(1, 0), make_task(2, 1, created_by=99), make_task(3, 2)]
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch.object(TaskService, 'list_for_board', new=AsyncMock(return_value=tasks)), \
                patch('taskgrid.services.task_service.AuditService.record_activity'):
            result = await TaskService.reorder(self.mock_db, 1, [3, 1], access_for("restricted_editor"), 7)

        assert [(task.id, task.order) for task in result] == [(3, 0), (2, 1), (1, 2)]
        self.mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reorder_without_changes_writes_nothing(self):
        tasks = [make_task(1, 0), make_task(2, 1)]
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch.object(TaskService, 'list_for_board', new=AsyncMock(return_value=tasks)):
            result = await TaskService.reorder(self.mock_db, 1, [1, 2], access_for("editor"), 7)

        assert [task.id for task in result] == [1, 2]
        self.mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restricted_editor_move_leaves_other_tasks_in_place(self):
        tasks = [
            make_task(1, 0, created_by=99, status="todo"),
            make_task(2, 1, status="todo"),
            make_task(3, 2, status="done"),
        ]
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch.object(TaskService, 'list_for_board', new=AsyncMock(return_value=tasks)), \
                patch('taskgrid.services.task_service.AuditService.record_activity'):
            moved = await TaskService.move_to_group(
                self.mock_db, 1, 3, "status", "todo", 0, access_for("restricted_editor"), 7,
            )

        assert moved.properties == {"status": "todo"}
        assert [(task.id, task.order) for task in tasks] == [(1, 0), (2, 2), (3, 1)]
        self.mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_restricted_editor_cannot_move_other_task(self):
        tasks = [make_task(1, 0, created_by=99, status="todo")]
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch.object(TaskService, 'list_for_board', new=AsyncMock(return_value=tasks)):
            with pytest.raises(ForbiddenError):
                await TaskService.move_to_group(
                    self.mock_db, 1, 1, "status", "done", 0, access_for("restricted_editor"), 7,
                )

        assert tasks[0].properties == {"status": "todo"}
        self.mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_move_to_group(self):
        tasks = [make_task(1, 0, status="todo"), make_task(2, 1, status="done")]
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch.object(TaskService, 'list_for_board', new=AsyncMock(return_value=tasks)), \
                patch('taskgrid.services.task_service.AuditService.record_activity'):
            moved = await TaskService.move_to_group(
                self.mock_db, 1, 2, "status", "todo", 0, access_for("editor"), 7,
            )

        assert moved.properties == {"status": "todo"}
        assert moved.order == 0
        assert tasks[0].order == 1
        self.mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_move_to_group_unknown_task(self):
        with patch('taskgrid.services.task_service.BoardService.require', return_value=self.board), \
                patch.object(TaskService, 'list_for_board', new=AsyncMock(return_value=[])):
            with pytest.raises(NotFoundError):
                await TaskService.move_to_group(
                    self.mock_db, 1, 9, "status", "todo", 0, access_for("editor"), 7,
                )
