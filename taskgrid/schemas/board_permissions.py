from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, EmailStr, field_validator

from taskgrid.models.board import BoardRole
from taskgrid.models.invitation import InvitationStatus


def _not_owner(role: str) -> str:
    role = role.strip()
    if not role:
        raise ValueError("Role must not be empty")
    if role == BoardRole.OWNER.value:
        raise ValueError("The owner role is only granted by transferring ownership")
    return role


class MemberRead(BaseModel):
    id: int
    board_id: int
    user_id: int
    role: str
    added_by: Optional[int] = None
    added_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RoleRead(BaseModel):
    id: int
    slug: str
    name: str
    description: Optional[str] = None
    permissions: List[str] = []
    board_id: Optional[int] = None
    is_system: Optional[bool] = False

    class Config:
        from_attributes = True


class AddMemberRequest(BaseModel):
    """Schema for adding a user to a board; role is a fixed role or a custom role slug"""
    user_id: int
    role: str = BoardRole.VIEWER.value

    @field_validator("role")
    @classmethod
    def check_role(cls, value):
        return _not_owner(value)


class AddMemberByEmailRequest(BaseModel):
    email: EmailStr
    role: str = BoardRole.VIEWER.value

    @field_validator("role")
    @classmethod
    def check_role(cls, value):
        return _not_owner(value)


class ChangeMemberRoleRequest(BaseModel):
    role: str

    @field_validator("role")
    @classmethod
    def check_role(cls, value):
        return _not_owner(value)


class TransferOwnershipRequest(BaseModel):
    """Schema for transferring board ownership"""
    new_owner_id: int


class InvitationCreate(BaseModel):
    email: EmailStr
    role: str = BoardRole.VIEWER.value

    @field_validator("role")
    @classmethod
    def check_role(cls, value):
        return _not_owner(value)


class InvitationRead(BaseModel):
    id: int
    board_id: int
    email: str
    role: str
    invited_by: Optional[int] = None
    status: InvitationStatus
    expires_at: datetime
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvitationRespond(BaseModel):
    accept: bool
