"""View query processor.

``apply_view`` runs search -> filter -> sort -> group -> aggregate over a
board's tasks. It is a pure function of its inputs: tasks are only read
(any object with ``id``, ``title``, ``order``, ``properties`` and
``created_by`` attributes works) and nothing is cached between calls.
"""
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from taskgrid.core.exceptions import ValidationError
from taskgrid.logs.debug_log import debug_logger
from taskgrid.schemas.property import Property, PropertyType
from taskgrid.schemas.view import (
    FilterCondition,
    FilterOperator,
    SortCondition,
    SortDirection,
    ToolbarState,
    ViewConfig,
    ViewType,
)
from taskgrid.services.aggregation_service import compute_aggregates
from taskgrid.services.property_types import (
    EMPTY_OPERATORS,
    as_id_list,
    behavior_for,
    check_operator,
    date_timestamp,
    first_value,
    text_of,
    to_number,
)
from taskgrid.services.schema_index import SchemaIndex

NO_VALUE_LABEL = "No value"


@dataclass
class GroupBucket:
    # None for the trailing "no value" bucket
    key: Optional[str]
    label: str
    color: Optional[str] = None
    tasks: List[Any] = field(default_factory=list)


@dataclass
class ViewResult:
    tasks: List[Any]
    groups: Optional[List[GroupBucket]] = None
    aggregates: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    visible_properties: List[str] = field(default_factory=list)
    group_by: Optional[str] = None

    @property
    def visible(self) -> Union[List[Any], List[GroupBucket]]:
        return self.groups if self.groups is not None else self.tasks

    def visual_order(self) -> List[Any]:
        """Tasks in the order they are displayed, bucket after bucket when grouped"""
        if self.groups is None:
            return list(self.tasks)
        return [task for bucket in self.groups for task in bucket.tasks]


def _values(task: Any) -> Mapping[str, Any]:
    return getattr(task, "properties", None) or {}


def _order(task: Any):
    order = getattr(task, "order", None)
    return 0 if order is None else order


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

def matches_search(task: Any, query: str, searchable: Sequence[Property]) -> bool:
    """Case-insensitive substring match on the title and text/rich_text values"""
    needle = query.strip().lower()
    if not needle:
        return True
    if needle in (getattr(task, "title", None) or "").lower():
        return True
    values = _values(task)
    return any(needle in text_of(values.get(prop.id)).lower() for prop in searchable)


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------

def compile_filters(
    filters: Sequence[FilterCondition], schema: SchemaIndex
) -> List[Tuple[Property, FilterCondition]]:
    """Validate filters against the schema; filters on unknown properties are dropped"""
    compiled = []
    for condition in filters or []:
        prop = schema.get(condition.property_id)
        if prop is None:
            debug_logger.debug(f"Ignoring filter on unknown property {condition.property_id}")
            continue
        check_operator(prop, condition.operator)
        if condition.operator not in EMPTY_OPERATORS:
            behavior = behavior_for(prop.type)
            if behavior.numeric and to_number(condition.value) is None:
                raise ValidationError(f"Filter on '{prop.name}' needs a numeric value")
            if prop.type == PropertyType.DATE and date_timestamp(condition.value) is None:
                raise ValidationError(f"Filter on '{prop.name}' needs an ISO date value")
        compiled.append((prop, condition))
    return compiled


def matches_filters(task: Any, compiled: List[Tuple[Property, FilterCondition]]) -> bool:
    values = _values(task)
    for prop, condition in compiled:
        matcher = behavior_for(prop.type).matcher
        if not matcher(FilterOperator(condition.operator), values.get(prop.id), condition.value):
            return False
    return True


# ---------------------------------------------------------------------------
# Sort
# ---------------------------------------------------------------------------

def compile_sorts(
    sorts: Sequence[SortCondition], schema: SchemaIndex
) -> List[Tuple[str, Callable[[Any], Any], bool]]:
    compiled = []
    for condition in sorts or []:
        prop = schema.get(condition.property_id)
        if prop is None:
            debug_logger.debug(f"Ignoring sort on unknown property {condition.property_id}")
            continue
        behavior = behavior_for(prop.type)
        if not behavior.sortable:
            raise ValidationError(f"Property '{prop.name}' of type {prop.type.value} cannot be sorted")
        compiled.append((prop.id, behavior.sort_key, condition.direction == SortDirection.DESC))
    return compiled


def _cmp(left, right) -> int:
    return (left > right) - (left < right)


def make_comparator(compiled: List[Tuple[str, Callable[[Any], Any], bool]]):
    """Multi-key comparator with the task order as the final tie-break.

    A missing value compares greater than any present one, and that result
    is negated along with the rest under ``desc``: missing values come last
    ascending and first descending.
    """

    def compare(a: Any, b: Any) -> int:
        a_values, b_values = _values(a), _values(b)
        for property_id, sort_key, descending in compiled:
            a_raw, b_raw = a_values.get(property_id), b_values.get(property_id)
            if a_raw == b_raw:
                continue
            a_key = None if a_raw is None else sort_key(a_raw)
            b_key = None if b_raw is None else sort_key(b_raw)
            if a_key is None and b_key is None:
                continue
            if a_key is None:
                result = 1
            elif b_key is None:
                result = -1
            else:
                result = _cmp(a_key, b_key)
            if result:
                return -result if descending else result
        return _cmp(_order(a), _order(b))

    return compare


def sort_tasks(tasks: List[Any], compiled) -> List[Any]:
    if not compiled:
        return sorted(tasks, key=_order)
    return sorted(tasks, key=cmp_to_key(make_comparator(compiled)))


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------

def resolve_group_property(
    config: ViewConfig, schema: SchemaIndex, view_type: ViewType = ViewType.TABLE
) -> Optional[Property]:
    """The groupBy property; kanban views fall back to the first status property"""
    if config.group_by is None:
        if ViewType(view_type) == ViewType.KANBAN:
            return schema.first_of_type(PropertyType.STATUS)
        return None
    prop = schema.get(config.group_by)
    if prop is None:
        raise ValidationError(f"groupBy references unknown property {config.group_by}")
    if not behavior_for(prop.type).groupable:
        raise ValidationError(
            f"Property '{prop.name}' of type {prop.type.value} cannot be used for grouping"
        )
    return prop


def _user_ids_in(tasks: Sequence[Any], property_id: str) -> List[str]:
    seen: Dict[str, None] = {}
    for task in tasks:
        for user_id in as_id_list(_values(task).get(property_id)):
            seen.setdefault(user_id, None)
    return list(seen)


def group_tasks(
    tasks: Sequence[Any],
    prop: Property,
    user_ids: Optional[Sequence[Any]] = None,
    user_labels: Optional[Mapping[str, str]] = None,
) -> List[GroupBucket]:
    """Bucket tasks by the first value of ``prop``.

    Every option (or known user) gets a bucket, empty ones included. Tasks
    without a value, or whose value matches no bucket (a removed option),
    land in a trailing "no value" bucket that only exists when non-empty.
    Bucket contents keep the incoming order.
    """
    if behavior_for(prop.type).group_strategy == "options":
        buckets = [
            GroupBucket(key=option.id, label=option.label, color=option.color)
            for option in prop.options or []
        ]
    else:
        known = [str(user_id) for user_id in user_ids] if user_ids is not None \
            else _user_ids_in(tasks, prop.id)
        labels = user_labels or {}
        buckets = [GroupBucket(key=user_id, label=labels.get(user_id, user_id)) for user_id in known]

    by_key = {bucket.key: bucket for bucket in buckets}
    no_value = GroupBucket(key=None, label=NO_VALUE_LABEL)
    for task in tasks:
        key = first_value(_values(task).get(prop.id))
        by_key.get(key, no_value).tasks.append(task)

    if no_value.tasks:
        buckets.append(no_value)
    return buckets


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def _coerce_config(config: Union[ViewConfig, Mapping, None]) -> ViewConfig:
    if config is None:
        return ViewConfig()
    if isinstance(config, ViewConfig):
        return config
    return ViewConfig.model_validate(config)


def _coerce_toolbar(toolbar: Union[ToolbarState, Mapping, None]) -> ToolbarState:
    if toolbar is None:
        return ToolbarState()
    if isinstance(toolbar, ToolbarState):
        return toolbar
    return ToolbarState.model_validate(toolbar)


def visible_property_ids(config: ViewConfig, schema: SchemaIndex) -> List[str]:
    if config.visible_properties is None:
        return schema.ids()
    return [pid for pid in config.visible_properties if pid in schema]


def apply_view(
    tasks: Sequence[Any],
    properties: Union[SchemaIndex, Sequence[Union[Property, dict]]],
    config: Union[ViewConfig, Mapping, None] = None,
    toolbar: Union[ToolbarState, Mapping, None] = None,
    view_type: ViewType = ViewType.TABLE,
    user_ids: Optional[Sequence[Any]] = None,
    user_labels: Optional[Mapping[str, str]] = None,
) -> ViewResult:
    """Run a view over ``tasks``.

    Raises ValidationError for an operator the property type does not
    support, for sorting or filtering an attachment property, and for a
    groupBy that is unknown or not groupable. All checks happen before any
    task is looked at.
    """
    schema = properties if isinstance(properties, SchemaIndex) else SchemaIndex(properties)
    config = _coerce_config(config)
    toolbar = _coerce_toolbar(toolbar)

    filters = compile_filters(toolbar.filters, schema)
    sorts = compile_sorts(toolbar.sorts, schema)
    group_prop = resolve_group_property(config, schema, view_type)
    searchable = [prop for prop in schema.properties if behavior_for(prop.type).searchable]

    selected = [
        task for task in tasks
        if matches_search(task, toolbar.search_query, searchable) and matches_filters(task, filters)
    ]
    ordered = sort_tasks(selected, sorts)

    groups = None
    if group_prop is not None:
        groups = group_tasks(ordered, group_prop, user_ids, user_labels)

    return ViewResult(
        tasks=ordered,
        groups=groups,
        aggregates=compute_aggregates(config.aggregations, ordered, schema),
        visible_properties=visible_property_ids(config, schema),
        group_by=group_prop.id if group_prop is not None else None,
    )
