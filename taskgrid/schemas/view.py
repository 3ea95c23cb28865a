from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4
from pydantic import AliasChoices, BaseModel, Field

from taskgrid.schemas.task import TaskRead


class ViewType(str, Enum):
    TABLE = "table"
    KANBAN = "kanban"


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    BEFORE = "before"
    AFTER = "after"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class AggregationType(str, Enum):
    COUNT = "count"
    COUNT_EMPTY = "count_empty"
    COUNT_NOT_EMPTY = "count_not_empty"
    PERCENT_EMPTY = "percent_empty"
    PERCENT_NOT_EMPTY = "percent_not_empty"
    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    RANGE = "range"
    MEDIAN = "median"


class FilterCondition(BaseModel):
    property_id: str = Field(alias="propertyId")
    operator: FilterOperator
    value: Any = None

    class Config:
        populate_by_name = True


class SortCondition(BaseModel):
    property_id: str = Field(alias="propertyId")
    direction: SortDirection = SortDirection.ASC

    class Config:
        populate_by_name = True


class AggregationConfig(BaseModel):
    property_id: str = Field(alias="propertyId")
    aggregation_type: AggregationType = Field(
        validation_alias=AliasChoices("type", "aggregationType", "aggregation_type"),
        serialization_alias="type",
    )

    class Config:
        populate_by_name = True


class ViewConfig(BaseModel):
    """Persisted view configuration: {groupBy?, visibleProperties?, aggregations?}"""
    group_by: Optional[str] = Field(default=None, alias="groupBy")
    visible_properties: Optional[List[str]] = Field(default=None, alias="visibleProperties")
    aggregations: Optional[List[AggregationConfig]] = None

    class Config:
        populate_by_name = True

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class View(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(min_length=1, max_length=100)
    type: ViewType = ViewType.TABLE
    is_default: bool = Field(default=False, alias="isDefault")
    config: ViewConfig = Field(default_factory=ViewConfig)

    class Config:
        populate_by_name = True

    def to_json(self) -> dict:
        data = self.model_dump(by_alias=True, mode="json", exclude={"config"})
        data["config"] = self.config.to_json()
        return data


class ViewCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: ViewType = ViewType.TABLE
    is_default: bool = Field(default=False, alias="isDefault")
    config: ViewConfig = Field(default_factory=ViewConfig)

    class Config:
        populate_by_name = True


class ViewUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_default: Optional[bool] = Field(default=None, alias="isDefault")
    config: Optional[ViewConfig] = None

    class Config:
        populate_by_name = True


class ToolbarState(BaseModel):
    """Transient search/filter/sort state; never persisted"""
    search_query: str = Field(default="", alias="searchQuery")
    filters: List[FilterCondition] = []
    sorts: List[SortCondition] = []

    class Config:
        populate_by_name = True


class ViewQuery(ToolbarState):
    """Run a saved view (or the default one) with the current toolbar state"""
    view_id: Optional[str] = Field(default=None, alias="viewId")


class GroupBucketResponse(BaseModel):
    # None is the trailing "no value" bucket
    key: Optional[str] = None
    label: str
    color: Optional[str] = None
    tasks: List[TaskRead] = []


class AggregateResponse(BaseModel):
    type: AggregationType
    value: Optional[float] = None


class ViewResultResponse(BaseModel):
    view_id: Optional[str] = Field(default=None, serialization_alias="viewId")
    total: int
    tasks: Optional[List[TaskRead]] = None
    groups: Optional[List[GroupBucketResponse]] = None
    visible_properties: List[str] = Field(default=[], serialization_alias="visibleProperties")
    aggregates: Dict[str, AggregateResponse] = {}


class FillRequest(ViewQuery):
    """Commit of a drag-fill over the rows the requester currently sees"""
    property_id: str = Field(alias="propertyId")
    value: Any = None
    start_index: int = Field(alias="startIndex", ge=0)
    end_index: int = Field(alias="endIndex", ge=0)
