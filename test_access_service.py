import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.core.exceptions import ForbiddenError, NotFoundError
from taskgrid.models.board import Board, BoardMember, BoardVisibility
from taskgrid.models.role import Role
from taskgrid.models.task import Task
from taskgrid.schemas.access import Scope
from taskgrid.schemas.property import Property, PropertyType
from taskgrid.services.access_service import (
    AccessService,
    can_delete_task,
    can_view_task,
    can_write_task,
    is_assigned,
    permission_codes,
    require_permission,
    require_task_write,
    resolve_access,
    ungrantable,
)
from taskgrid.services.schema_index import SchemaIndex

ADMIN = "admin"


def make_board(visibility=BoardVisibility.PRIVATE, owner_id=1):
    return Board(id=10, name="Roadmap", owner_id=owner_id, visibility=visibility, properties=[], views=[])


class TestResolveAccess:
    """Decision order: global admin, owner, membership, workspace, nothing"""

    def test_workspace_board_gives_non_members_viewer_access(self):
        board = make_board(BoardVisibility.WORKSPACE)
        access = resolve_access(board, 42, system_admin_role=ADMIN)

        assert access.has_access is True
        assert access.role == "viewer"
        assert access.is_owner is False
        payload = access.permissions.model_dump(by_alias=True)
        assert payload["canViewBoard"] is True
        assert payload["canEditTasks"] is False
        assert payload["canManageMembers"] is False

    def test_private_board_denies_non_members(self):
        access = resolve_access(make_board(), 42, system_admin_role=ADMIN)
        assert access.has_access is False
        assert access.permissions.can_view_board is False

    def test_global_admin_gets_full_access_without_owning(self):
        access = resolve_access(make_board(), 42, global_role="admin", system_admin_role=ADMIN)
        assert access.has_access is True
        assert access.role == "owner"
        assert access.is_owner is False
        assert access.permissions.can_delete_board is True

    def test_owner(self):
        access = resolve_access(make_board(owner_id=42), 42, system_admin_role=ADMIN)
        assert access.is_owner is True
        assert access.permissions.can_manage_members is True
        assert access.permissions.can_delete_board is True

    def test_admin_member_cannot_delete_board(self):
        access = resolve_access(make_board(), 42, member_role="admin", system_admin_role=ADMIN)
        assert access.permissions.can_manage_members is True
        assert access.permissions.can_edit_board is True
        assert access.permissions.can_delete_board is False

    def test_editor(self):
        permissions = resolve_access(make_board(), 42, member_role="editor", system_admin_role=ADMIN).permissions
        assert permissions.can_create_tasks and permissions.can_edit_tasks and permissions.can_delete_tasks
        assert not permissions.can_edit_board
        assert not permissions.can_manage_members

    def test_viewer_member_on_workspace_board(self):
        board = make_board(BoardVisibility.WORKSPACE)
        access = resolve_access(board, 42, member_role="viewer", system_admin_role=ADMIN)
        assert access.role == "viewer"
        assert access.permissions.can_edit_tasks is False

    def test_restricted_roles_are_scoped_to_assigned_tasks(self):
        editor = resolve_access(make_board(), 42, member_role="restricted_editor", system_admin_role=ADMIN)
        assert editor.permissions.view_scope == Scope.ASSIGNED
        assert editor.permissions.edit_scope == Scope.ASSIGNED
        assert editor.permissions.can_edit_tasks is True
        assert editor.permissions.can_delete_tasks is False

        viewer = resolve_access(make_board(), 42, member_role="restricted_viewer", system_admin_role=ADMIN)
        assert viewer.permissions.view_scope == Scope.ASSIGNED
        assert viewer.permissions.can_edit_tasks is False

    def test_custom_role_permissions(self):
        access = resolve_access(
            make_board(), 42,
            member_role="triage",
            custom_permissions=["board.view", "task.edit"],
            system_admin_role=ADMIN,
        )
        assert access.has_access is True
        assert access.role == "triage"
        assert access.permissions.can_edit_tasks is True
        assert access.permissions.can_create_tasks is False

    def test_unknown_custom_role_grants_nothing(self):
        board = make_board(BoardVisibility.WORKSPACE)
        access = resolve_access(board, 42, member_role="ghost", system_admin_role=ADMIN)
        assert access.has_access is False


class TestGrantablePermissions:
    """A role can only be handed out by someone holding all of its permissions"""

    def test_owner_holds_everything(self):
        owner = resolve_access(make_board(), 1, system_admin_role=ADMIN)
        assert ungrantable(owner.permissions, ["board.view", "board.delete", "members.manage"]) == []

    def test_admin_cannot_grant_board_delete(self):
        admin = resolve_access(make_board(), 2, member_role="admin", system_admin_role=ADMIN)
        assert ungrantable(admin.permissions, ["board.view", "task.edit", "board.delete"]) == ["board.delete"]

    def test_assigned_scope_limits_what_can_be_granted(self):
        scoped = resolve_access(
            make_board(), 3, member_role="lead",
            custom_permissions=["board.view", "task.edit", "edit.scope.assigned", "members.manage"],
            system_admin_role=ADMIN,
        )
        assert ungrantable(scoped.permissions, ["board.view", "task.edit"]) == ["task.edit"]
        assert ungrantable(scoped.permissions, ["board.view", "task.edit", "edit.scope.assigned"]) == []

    def test_permission_codes_round_trip_the_role(self):
        editor = resolve_access(make_board(), 4, member_role="restricted_editor", system_admin_role=ADMIN)
        assert permission_codes(editor.permissions) == frozenset({
            "board.view", "view.scope.assigned", "task.create", "task.edit", "edit.scope.assigned",
        })


class TestTaskScope:
    def setup_method(self):
        self.schema = SchemaIndex([
            Property(id="owner", name="Owner", type=PropertyType.PERSON, order=0),
            Property(id="reviewers", name="Reviewers", type=PropertyType.USER, order=1),
        ])
        self.board = make_board()
        self.mine = Task(id=1, board_id=10, title="Mine", order=0, properties={}, created_by=42)
        self.assigned = Task(id=2, board_id=10, title="Assigned", order=1, properties={"reviewers": ["7", "42"]}, created_by=7)
        self.other = Task(id=3, board_id=10, title="Other", order=2, properties={"owner": "7"}, created_by=7)

    def test_is_assigned(self):
        assert is_assigned(self.mine, 42, self.schema)
        assert is_assigned(self.assigned, 42, self.schema)
        assert not is_assigned(self.other, 42, self.schema)
        assert not is_assigned(self.other, None, self.schema)

    def test_restricted_viewer_sees_only_assigned_tasks(self):
        access = resolve_access(self.board, 42, member_role="restricted_viewer", system_admin_role=ADMIN)
        visible = [t.id for t in (self.mine, self.assigned, self.other) if can_view_task(access, t, 42, self.schema)]
        assert visible == [1, 2]

    def test_restricted_editor_writes_only_assigned_tasks(self):
        access = resolve_access(self.board, 42, member_role="restricted_editor", system_admin_role=ADMIN)
        assert can_write_task(access, self.assigned, 42, self.schema)
        assert not can_write_task(access, self.other, 42, self.schema)
        assert not can_delete_task(access, self.mine, 42, self.schema)
        with pytest.raises(ForbiddenError):
            require_task_write(access, self.other, 42, self.schema)

    def test_editor_writes_everything(self):
        access = resolve_access(self.board, 42, member_role="editor", system_admin_role=ADMIN)
        assert can_write_task(access, self.other, 42, self.schema)
        assert can_delete_task(access, self.other, 42, self.schema)

    def test_require_permission(self):
        viewer = resolve_access(self.board, 42, member_role="viewer", system_admin_role=ADMIN)
        assert require_permission(viewer, "can_view_board") is viewer
        with pytest.raises(ForbiddenError):
            require_permission(viewer, "can_edit_tasks")

        outsider = resolve_access(self.board, 42, system_admin_role=ADMIN)
        with pytest.raises(ForbiddenError):
            require_permission(outsider, "can_view_board")


class TestAccessService:
    """Store-backed resolution with a mocked session"""

    def setup_method(self):
        self.mock_db = AsyncMock(spec=AsyncSession)

    def row_result(self, row):
        mock_result = MagicMock()
        mock_result.first.return_value = row
        return mock_result

    @pytest.mark.asyncio
    async def test_missing_board(self):
        self.mock_db.execute.return_value = self.row_result(None)
        with pytest.raises(NotFoundError):
            await AccessService.resolve(self.mock_db, 99, 42)

    @pytest.mark.asyncio
    async def test_member_row_drives_the_role(self):
        board = make_board()
        member = BoardMember(board_id=10, user_id=42, role="editor")
        self.mock_db.execute.return_value = self.row_result((board, member))

        access = await AccessService.resolve(self.mock_db, 10, 42)

        assert access.role == "editor"
        assert access.permissions.can_edit_tasks is True
        self.mock_db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_custom_role_is_looked_up(self):
        board = make_board()
        member = BoardMember(board_id=10, user_id=42, role="triage")
        role = Role(slug="triage", name="Triage", permissions=["board.view", "task.create"], board_id=10)
        self.mock_db.execute.return_value = self.row_result((board, member))

        with patch.object(AccessService, "find_role", new=AsyncMock(return_value=role)) as mock_find:
            access = await AccessService.resolve(self.mock_db, 10, 42)

        mock_find.assert_awaited_once_with(self.mock_db, 10, "triage")
        assert access.has_access is True
        assert access.permissions.can_create_tasks is True
        assert access.permissions.can_edit_tasks is False

    @pytest.mark.asyncio
    async def test_workspace_board_without_membership(self):
        board = make_board(BoardVisibility.WORKSPACE)
        self.mock_db.execute.return_value = self.row_result((board, None))

        access = await AccessService.resolve(self.mock_db, 10, 42)

        assert access.role == "viewer"
        assert access.permissions.can_edit_tasks is False

    @pytest.mark.asyncio
    async def test_list_roles(self):
        roles = [
            Role(id=1, slug="reviewer", name="Reviewer", permissions=["board.view"], board_id=None, is_system=True),
            Role(id=2, slug="triage", name="Triage", permissions=["board.view", "task.create"], board_id=10),
        ]
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = roles
        self.mock_db.execute.return_value = mock_result

        result = await AccessService.list_roles(self.mock_db, 10)

        assert [role.slug for role in result] == ["reviewer", "triage"]
        self.mock_db.execute.assert_awaited_once()
