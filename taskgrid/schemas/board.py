from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from taskgrid.models.board import BoardVisibility
from taskgrid.schemas.property import Property
from taskgrid.schemas.view import View


class BoardBase(BaseModel):
    """Base schema for board data"""
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    visibility: BoardVisibility = BoardVisibility.PRIVATE


class BoardCreate(BoardBase):
    """Schema for board creation"""
    pass


class BoardUpdate(BaseModel):
    """Schema for board update"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    visibility: Optional[BoardVisibility] = None


class BoardSummary(BoardBase):
    """Board without its schema, used for listings"""
    id: int
    owner_id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BoardRead(BoardSummary):
    """Board with its properties and saved views"""
    properties: List[Property] = []
    views: List[View] = []

    class Config:
        from_attributes = True
