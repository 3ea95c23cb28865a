"""Access resolver: who may do what on a board.

``resolve_access`` is the single decision point. It is pure and computed
fresh for every request; ``AccessService.resolve`` feeds it from one
batched board/membership read.
"""
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.core import get_settings
from taskgrid.core.exceptions import ForbiddenError, NotFoundError
from taskgrid.logs.server_log import api_logger
from taskgrid.models.board import Board, BoardMember, BoardRole, BoardVisibility
from taskgrid.models.role import Role
from taskgrid.schemas.access import AccessResult, BoardPermissions, Scope
from taskgrid.schemas.property import PropertyType
from taskgrid.services.property_types import as_id_list
from taskgrid.services.schema_index import SchemaIndex


class Permission:
    """Permission ids used by custom roles"""
    BOARD_VIEW = "board.view"
    VIEW_SCOPE_ASSIGNED = "view.scope.assigned"
    TASK_CREATE = "task.create"
    TASK_EDIT = "task.edit"
    EDIT_SCOPE_ASSIGNED = "edit.scope.assigned"
    TASK_DELETE = "task.delete"
    BOARD_EDIT = "board.edit"
    MEMBERS_MANAGE = "members.manage"
    BOARD_DELETE = "board.delete"

    ALL = frozenset({
        BOARD_VIEW, VIEW_SCOPE_ASSIGNED, TASK_CREATE, TASK_EDIT, EDIT_SCOPE_ASSIGNED,
        TASK_DELETE, BOARD_EDIT, MEMBERS_MANAGE, BOARD_DELETE,
    })


P = Permission

ROLE_PERMISSIONS: Dict[BoardRole, FrozenSet[str]] = {
    BoardRole.OWNER: frozenset({
        P.BOARD_VIEW, P.TASK_CREATE, P.TASK_EDIT, P.TASK_DELETE,
        P.BOARD_EDIT, P.MEMBERS_MANAGE, P.BOARD_DELETE,
    }),
    BoardRole.ADMIN: frozenset({
        P.BOARD_VIEW, P.TASK_CREATE, P.TASK_EDIT, P.TASK_DELETE, P.BOARD_EDIT, P.MEMBERS_MANAGE,
    }),
    BoardRole.EDITOR: frozenset({P.BOARD_VIEW, P.TASK_CREATE, P.TASK_EDIT, P.TASK_DELETE}),
    BoardRole.VIEWER: frozenset({P.BOARD_VIEW}),
    BoardRole.RESTRICTED_EDITOR: frozenset({
        P.BOARD_VIEW, P.VIEW_SCOPE_ASSIGNED, P.TASK_CREATE, P.TASK_EDIT, P.EDIT_SCOPE_ASSIGNED,
    }),
    BoardRole.RESTRICTED_VIEWER: frozenset({P.BOARD_VIEW, P.VIEW_SCOPE_ASSIGNED}),
}

FIXED_ROLES = frozenset(role.value for role in BoardRole)
MANAGER_ROLES = frozenset({BoardRole.OWNER.value, BoardRole.ADMIN.value})


def permissions_from_codes(codes: Iterable[str]) -> BoardPermissions:
    """Map a permission-id set to the capability object"""
    codes = frozenset(codes)
    return BoardPermissions(
        can_view_board=P.BOARD_VIEW in codes,
        can_create_tasks=P.TASK_CREATE in codes,
        can_edit_tasks=P.TASK_EDIT in codes,
        can_delete_tasks=P.TASK_DELETE in codes,
        can_edit_board=P.BOARD_EDIT in codes,
        can_manage_members=P.MEMBERS_MANAGE in codes,
        can_delete_board=P.BOARD_DELETE in codes,
        view_scope=Scope.ASSIGNED if P.VIEW_SCOPE_ASSIGNED in codes else Scope.ALL,
        edit_scope=Scope.ASSIGNED if P.EDIT_SCOPE_ASSIGNED in codes else Scope.ALL,
    )


_FLAG_CODES = (
    ("can_view_board", P.BOARD_VIEW),
    ("can_create_tasks", P.TASK_CREATE),
    ("can_edit_tasks", P.TASK_EDIT),
    ("can_delete_tasks", P.TASK_DELETE),
    ("can_edit_board", P.BOARD_EDIT),
    ("can_manage_members", P.MEMBERS_MANAGE),
    ("can_delete_board", P.BOARD_DELETE),
)
SCOPE_CODES = frozenset({P.VIEW_SCOPE_ASSIGNED, P.EDIT_SCOPE_ASSIGNED})
# Capabilities narrowed by an assigned scope
_SCOPED = (
    (P.BOARD_VIEW, P.VIEW_SCOPE_ASSIGNED),
    (P.TASK_EDIT, P.EDIT_SCOPE_ASSIGNED),
    (P.TASK_DELETE, P.EDIT_SCOPE_ASSIGNED),
)


def permission_codes(permissions: BoardPermissions) -> FrozenSet[str]:
    """Inverse of permissions_from_codes"""
    codes = {code for flag, code in _FLAG_CODES if getattr(permissions, flag)}
    if permissions.view_scope == Scope.ASSIGNED:
        codes.add(P.VIEW_SCOPE_ASSIGNED)
    if permissions.edit_scope == Scope.ASSIGNED:
        codes.add(P.EDIT_SCOPE_ASSIGNED)
    return frozenset(codes)


def ungrantable(held: BoardPermissions, granted: Iterable[str]) -> List[str]:
    """Permission ids in ``granted`` that a holder of ``held`` may not hand out.

    Scope ids only narrow a capability; a capability granted without the
    assigned scope the holder is limited to counts as not held.
    """
    granted = frozenset(granted)
    owned = permission_codes(held)
    missing = {code for code in granted - owned if code not in SCOPE_CODES}
    for capability, scope in _SCOPED:
        if capability in granted and scope in owned and scope not in granted:
            missing.add(capability)
    return sorted(missing)


FULL_ACCESS = permissions_from_codes(ROLE_PERMISSIONS[BoardRole.OWNER])
NO_ACCESS = AccessResult(has_access=False)


def resolve_access(
    board: Any,
    user_id: Optional[int],
    global_role: Optional[str] = None,
    member_role: Optional[str] = None,
    custom_permissions: Optional[Iterable[str]] = None,
    system_admin_role: Optional[str] = None,
) -> AccessResult:
    """Compute the requester's capabilities on ``board``.

    First matching rule wins: global admin, owner, explicit membership,
    workspace visibility, otherwise no access. ``member_role`` is the role
    of the requester's membership row (None without one); for a custom role
    ``custom_permissions`` carries its permission-id set.
    """
    if system_admin_role is None:
        system_admin_role = get_settings().SYSTEM_ADMIN_ROLE

    if global_role and global_role == system_admin_role:
        return AccessResult(
            has_access=True, role=BoardRole.OWNER.value, is_owner=False, permissions=FULL_ACCESS
        )

    if user_id is not None and str(user_id) == str(board.owner_id):
        return AccessResult(
            has_access=True, role=BoardRole.OWNER.value, is_owner=True, permissions=FULL_ACCESS
        )

    if member_role is not None:
        if member_role in FIXED_ROLES:
            permissions = permissions_from_codes(ROLE_PERMISSIONS[BoardRole(member_role)])
        else:
            # Unknown custom roles grant nothing
            permissions = permissions_from_codes(custom_permissions or ())
        return AccessResult(
            has_access=permissions.can_view_board, role=member_role, permissions=permissions
        )

    if BoardVisibility(board.visibility) == BoardVisibility.WORKSPACE:
        return AccessResult(
            has_access=True,
            role=BoardRole.VIEWER.value,
            permissions=permissions_from_codes(ROLE_PERMISSIONS[BoardRole.VIEWER]),
        )

    return NO_ACCESS


def is_assigned(task: Any, user_id: Any, schema: SchemaIndex) -> bool:
    """True when the user created the task or appears in any person/user value"""
    if user_id is None:
        return False
    user_key = str(user_id)
    created_by = getattr(task, "created_by", None)
    if created_by is not None and str(created_by) == user_key:
        return True
    values = getattr(task, "properties", None) or {}
    for prop in schema.of_type(PropertyType.PERSON, PropertyType.USER):
        if user_key in as_id_list(values.get(prop.id)):
            return True
    return False


def can_view_task(access: AccessResult, task: Any, user_id: Any, schema: SchemaIndex) -> bool:
    if not access.has_access:
        return False
    if access.permissions.view_scope == Scope.ASSIGNED:
        return is_assigned(task, user_id, schema)
    return True


def can_write_task(access: AccessResult, task: Any, user_id: Any, schema: SchemaIndex) -> bool:
    if not access.has_access or not access.permissions.can_edit_tasks:
        return False
    if access.permissions.edit_scope == Scope.ASSIGNED:
        return is_assigned(task, user_id, schema)
    return True


def can_delete_task(access: AccessResult, task: Any, user_id: Any, schema: SchemaIndex) -> bool:
    if not access.has_access or not access.permissions.can_delete_tasks:
        return False
    if access.permissions.edit_scope == Scope.ASSIGNED:
        return is_assigned(task, user_id, schema)
    return True


_PERMISSION_MESSAGES = {
    "can_view_board": "You don't have access to this board",
    "can_create_tasks": "You are not allowed to create tasks on this board",
    "can_edit_tasks": "You are not allowed to edit tasks on this board",
    "can_delete_tasks": "You are not allowed to delete tasks on this board",
    "can_edit_board": "You are not allowed to edit this board",
    "can_manage_members": "You are not allowed to manage members of this board",
    "can_delete_board": "Only the board owner can delete the board",
}


def require_permission(access: AccessResult, permission: str) -> AccessResult:
    """Raise ForbiddenError unless the capability flag is granted"""
    if not access.has_access or not getattr(access.permissions, permission):
        message = _PERMISSION_MESSAGES.get(permission, "Operation not allowed")
        api_logger.warning(f"Access denied: {permission} (role={access.role})")
        raise ForbiddenError(message)
    return access


def require_task_write(access: AccessResult, task: Any, user_id: Any, schema: SchemaIndex) -> None:
    require_permission(access, "can_edit_tasks")
    if not can_write_task(access, task, user_id, schema):
        api_logger.warning(f"Access denied: task {getattr(task, 'id', None)} outside assigned scope")
        raise ForbiddenError("You can only edit tasks you created or are assigned to")


def require_task_delete(access: AccessResult, task: Any, user_id: Any, schema: SchemaIndex) -> None:
    require_permission(access, "can_delete_tasks")
    if not can_delete_task(access, task, user_id, schema):
        raise ForbiddenError("You can only delete tasks you created or are assigned to")


class AccessService:
    """Store-backed entry points of the access resolver"""

    @staticmethod
    async def find_role(db: AsyncSession, board_id: int, slug: str) -> Optional[Role]:
        """Custom role by slug; a board-specific role wins over a system-wide one"""
        query = (
            select(Role)
            .where(
                Role.slug == slug,
                or_(Role.board_id == board_id, Role.board_id.is_(None)),
            )
            .order_by(Role.board_id.is_(None))
            .limit(1)
        )
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def list_roles(db: AsyncSession, board_id: int) -> List[Role]:
        """System-wide roles first, then the board's own, each by name"""
        query = (
            select(Role)
            .where(or_(Role.board_id == board_id, Role.board_id.is_(None)))
            .order_by(Role.board_id.is_not(None), Role.name)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def load_board_and_member(db: AsyncSession, board_id: int, user_id: Optional[int]):
        """Board and the requester's membership row in a single read"""
        query = (
            select(Board, BoardMember)
            .outerjoin(
                BoardMember,
                and_(BoardMember.board_id == Board.id, BoardMember.user_id == user_id),
            )
            .where(Board.id == board_id)
        )
        result = await db.execute(query)
        row = result.first()
        if row is None:
            raise NotFoundError(f"Board {board_id} not found")
        return row[0], row[1]

    @staticmethod
    async def resolve(
        db: AsyncSession,
        board_id: int,
        user_id: Optional[int],
        global_role: Optional[str] = None,
    ) -> AccessResult:
        board, member = await AccessService.load_board_and_member(db, board_id, user_id)
        return await AccessService.resolve_for(db, board, member, user_id, global_role)

    @staticmethod
    async def resolve_for(
        db: AsyncSession,
        board: Board,
        member: Optional[BoardMember],
        user_id: Optional[int],
        global_role: Optional[str] = None,
    ) -> AccessResult:
        member_role = member.role if member is not None else None
        custom_permissions = None
        if member_role is not None and member_role not in FIXED_ROLES:
            role = await AccessService.find_role(db, board.id, member_role)
            if role is None:
                api_logger.warning(f"Board {board.id}: member {user_id} has unknown role '{member_role}'")
            else:
                custom_permissions = role.permissions or []
        return resolve_access(board, user_id, global_role, member_role, custom_permissions)
