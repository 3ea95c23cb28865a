from enum import Enum
from typing import Optional
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class Scope(str, Enum):
    ALL = "all"
    ASSIGNED = "assigned"


class BoardPermissions(BaseModel):
    """Capability object computed by the access resolver"""
    can_view_board: bool = False
    can_create_tasks: bool = False
    can_edit_tasks: bool = False
    can_delete_tasks: bool = False
    can_edit_board: bool = False
    can_manage_members: bool = False
    can_delete_board: bool = False
    view_scope: Scope = Scope.ALL
    edit_scope: Scope = Scope.ALL

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True


class AccessResult(BaseModel):
    has_access: bool
    role: Optional[str] = None
    is_owner: bool = False
    permissions: BoardPermissions = BoardPermissions()

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True
