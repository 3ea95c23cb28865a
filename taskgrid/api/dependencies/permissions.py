from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taskgrid.api.dependencies.auth import get_current_user
from taskgrid.db.database import get_async_session
from taskgrid.models.user import User
from taskgrid.schemas.access import AccessResult
from taskgrid.services.access_service import AccessService, require_permission


async def get_board_access(
    board_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
) -> AccessResult:
    """Resolve the acting user's access to the board, fresh for this request"""
    return await AccessService.resolve(db, board_id, current_user.id, current_user.role)


def board_permission(permission: str):
    """
    Dependency factory requiring one capability flag on the board

    Args:
        permission: AccessResult.permissions attribute, e.g. "can_edit_tasks"

    Returns:
        Dependency yielding the AccessResult; raises ForbiddenError when the flag is missing
    """

    async def dependency(access: AccessResult = Depends(get_board_access)) -> AccessResult:
        return require_permission(access, permission)

    return dependency


can_view_board = board_permission("can_view_board")
can_create_tasks = board_permission("can_create_tasks")
can_edit_tasks = board_permission("can_edit_tasks")
can_edit_board = board_permission("can_edit_board")
can_manage_members = board_permission("can_manage_members")
can_delete_board = board_permission("can_delete_board")
