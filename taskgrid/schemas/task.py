from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class TaskBase(BaseModel):
    """Base schema for task data"""
    title: str = Field(default="", max_length=500)


class TaskCreate(TaskBase):
    """Schema for task creation; order is assigned by the store"""
    properties: Dict[str, Any] = {}


class TaskUpdate(BaseModel):
    """Partial update; a null property value removes that key"""
    title: Optional[str] = Field(default=None, max_length=500)
    properties: Optional[Dict[str, Any]] = None


class TaskRead(TaskBase):
    """Schema for task representation"""
    id: int
    board_id: int
    order: int
    properties: Dict[str, Any] = {}
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TaskList(BaseModel):
    tasks: List[TaskRead]


class TaskReorderRequest(BaseModel):
    """Full new order of the board's tasks"""
    task_ids: List[int] = Field(min_length=1)


class TaskMoveRequest(BaseModel):
    """Move a task into a group bucket at a position"""
    property_id: str
    # None targets the "no value" bucket
    target_group_value: Optional[str] = None
    target_index: int = Field(default=0, ge=0)


class BulkDeleteRequest(BaseModel):
    task_ids: List[int] = Field(min_length=1)


class BulkDeleteResponse(BaseModel):
    deleted: int
