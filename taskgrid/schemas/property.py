from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4
from pydantic import BaseModel, Field, field_validator, model_validator


class PropertyType(str, Enum):
    """Property (column) types of a board schema"""
    TEXT = "text"
    RICH_TEXT = "rich_text"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    STATUS = "status"
    CHECKBOX = "checkbox"
    PERSON = "person"
    USER = "user"
    ATTACHMENT = "attachment"

    @classmethod
    def _missing_(cls, value):
        # Older boards store hyphenated names ("multi-select", "rich-text")
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            for member in cls:
                if member.value == normalized:
                    return member
        return None


OPTION_TYPES = frozenset({PropertyType.SELECT, PropertyType.MULTI_SELECT, PropertyType.STATUS})
GROUPABLE_TYPES = frozenset(OPTION_TYPES | {PropertyType.PERSON, PropertyType.USER})


def new_id() -> str:
    return str(uuid4())


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 date or datetime; a trailing Z is accepted"""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class PropertyOption(BaseModel):
    """One selectable value of a select/status/multi_select property"""
    id: str = Field(default_factory=new_id)
    label: str = Field(min_length=1)
    color: Optional[str] = None


class PropertyOptionCreate(BaseModel):
    label: str = Field(min_length=1)
    color: Optional[str] = None


class PropertyOptionUpdate(BaseModel):
    label: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = None


class Property(BaseModel):
    """Typed column of a board"""
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1, max_length=100)
    type: PropertyType
    order: int = Field(default=0, ge=0)
    width: Optional[int] = Field(default=None, ge=50)
    required: bool = False
    options: Optional[List[PropertyOption]] = None

    @model_validator(mode="after")
    def check_options(self):
        if self.type not in OPTION_TYPES:
            self.options = None
            return self
        if self.options is None:
            self.options = []
        ids = [option.id for option in self.options]
        if len(ids) != len(set(ids)):
            raise ValueError("Option ids must be unique within a property")
        return self

    def option_ids(self) -> List[str]:
        return [option.id for option in self.options or []]


class PropertyCreate(BaseModel):
    """Schema for adding a property; id and order are assigned by the store"""
    name: str = Field(min_length=1, max_length=100)
    type: PropertyType
    width: Optional[int] = Field(default=None, ge=50)
    required: bool = False
    options: Optional[List[PropertyOptionCreate]] = None
    insert_index: Optional[int] = Field(default=None, ge=0)


class PropertyUpdate(BaseModel):
    """Rename / resize / toggle required; never touches task values"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    width: Optional[int] = Field(default=None, ge=50)
    required: Optional[bool] = None


class ReorderRequest(BaseModel):
    old_index: int = Field(ge=0)
    new_index: int = Field(ge=0)


class DateValue(BaseModel):
    """Date value; a bare ISO string is the legacy form of {from: value}"""
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    has_time: bool = Field(default=False, alias="hasTime")

    class Config:
        populate_by_name = True

    @field_validator("from_", "to")
    @classmethod
    def check_iso(cls, value):
        if value is not None:
            parse_iso(value)
        return value


class AttachmentValue(BaseModel):
    id: str
    name: str
    url: str
    type: str
    size: int = Field(ge=0)
