"""Per-type behavior of board properties.

Every property type is described once in ``BEHAVIORS``: how a written value is
validated, which filter operators apply, how values compare when sorting,
whether numeric aggregations are available and how the type groups.
The query processor, the fill engine and the task store only go through this
table and never branch on the type name themselves.
"""
import math
from dataclasses import dataclass
from datetime import timezone
from typing import Annotated, Any, Callable, Dict, FrozenSet, List, Optional, Union

from pydantic import AfterValidator, StrictBool, StrictFloat, StrictInt, StrictStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from taskgrid.core.exceptions import ValidationError
from taskgrid.schemas.property import (
    AttachmentValue,
    DateValue,
    Property,
    PropertyType,
    parse_iso,
)
from taskgrid.schemas.view import FilterOperator


Op = FilterOperator

EMPTY_OPERATORS = frozenset({Op.IS_EMPTY, Op.IS_NOT_EMPTY})
TEXT_OPERATORS = frozenset({Op.CONTAINS, Op.NOT_CONTAINS, Op.EQUALS, Op.NOT_EQUALS}) | EMPTY_OPERATORS
NUMBER_OPERATORS = frozenset({
    Op.EQUALS, Op.NOT_EQUALS, Op.GREATER_THAN, Op.LESS_THAN, Op.GREATER_OR_EQUAL, Op.LESS_OR_EQUAL,
})
DATE_OPERATORS = frozenset({Op.EQUALS, Op.BEFORE, Op.AFTER}) | EMPTY_OPERATORS
CHOICE_OPERATORS = frozenset({Op.EQUALS, Op.NOT_EQUALS}) | EMPTY_OPERATORS
CHECKBOX_OPERATORS = frozenset({Op.EQUALS})


# ---------------------------------------------------------------------------
# Value helpers shared by every consumer
# ---------------------------------------------------------------------------

def is_empty(value: Any) -> bool:
    """Missing, null, empty string, empty list or a date without a start"""
    if value is None or value == "" or value == []:
        return True
    if isinstance(value, dict) and "from" in value and value.get("from") in (None, ""):
        return True
    return False


def to_number(value: Any) -> Optional[float]:
    """Numeric coercion used by filters, sorts and aggregations.

    Booleans are not numbers; numeric strings are.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def date_timestamp(value: Any) -> Optional[float]:
    """Reduce either date form to the POSIX timestamp of its start"""
    if isinstance(value, dict):
        value = value.get("from")
    if not isinstance(value, str) or not value:
        return None
    try:
        moment = parse_iso(value)
    except ValueError:
        return None
    if moment.tzinfo is None:
        # Naive values are stored as UTC
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def as_id_list(value: Any) -> List[str]:
    """Single id or list of ids, normalized to a list of strings"""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and item != ""]
    return [str(value)]


def text_of(value: Any) -> str:
    """Plain text of a text or rich_text value (structured documents are flattened)"""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return " ".join(filter(None, (text_of(item) for item in value.values())))
    if isinstance(value, list):
        return " ".join(filter(None, (text_of(item) for item in value)))
    return str(value)


def first_value(value: Any) -> Optional[str]:
    """Group key of a value: the first id of a list, the id itself otherwise"""
    ids = as_id_list(value)
    return ids[0] if ids else None


# ---------------------------------------------------------------------------
# Filter matchers, one per family. Missing values fail every comparison that
# needs a value; negative operators pass them.
# ---------------------------------------------------------------------------

def _match_empty(operator: Op, value: Any) -> Optional[bool]:
    if operator == Op.IS_EMPTY:
        return is_empty(value)
    if operator == Op.IS_NOT_EMPTY:
        return not is_empty(value)
    return None


def _match_text(operator: Op, value: Any, target: Any) -> bool:
    result = _match_empty(operator, value)
    if result is not None:
        return result
    text = None if is_empty(value) else text_of(value)
    target = "" if target is None else str(target)
    if operator == Op.CONTAINS:
        return text is not None and target.lower() in text.lower()
    if operator == Op.NOT_CONTAINS:
        return text is None or target.lower() not in text.lower()
    if operator == Op.EQUALS:
        return text == target
    return text != target


def _compare(operator: Op, left: Optional[float], right: Optional[float]) -> bool:
    if operator == Op.NOT_EQUALS:
        return left is None or right is None or left != right
    if left is None or right is None:
        return False
    if operator == Op.EQUALS:
        return left == right
    if operator in (Op.GREATER_THAN, Op.AFTER):
        return left > right
    if operator in (Op.LESS_THAN, Op.BEFORE):
        return left < right
    if operator == Op.GREATER_OR_EQUAL:
        return left >= right
    return left <= right


def _match_number(operator: Op, value: Any, target: Any) -> bool:
    return _compare(operator, to_number(value), to_number(target))


def _match_date(operator: Op, value: Any, target: Any) -> bool:
    result = _match_empty(operator, value)
    if result is not None:
        return result
    return _compare(operator, date_timestamp(value), date_timestamp(target))


def _match_choice(operator: Op, value: Any, target: Any) -> bool:
    result = _match_empty(operator, value)
    if result is not None:
        return result
    present = target is not None and str(target) in as_id_list(value)
    return present if operator == Op.EQUALS else not present


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _match_checkbox(operator: Op, value: Any, target: Any) -> bool:
    # An unset checkbox reads as unchecked
    return (value is True) == _to_bool(target)


# ---------------------------------------------------------------------------
# Sort keys; None is the "missing" sentinel handled by the comparator
# ---------------------------------------------------------------------------

def _number_key(value: Any) -> Optional[float]:
    return to_number(value)


def _boolean_key(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return 1 if value else 0
    return None


def _text_key(value: Any) -> Optional[str]:
    return None if value is None else text_of(value)


def _ids_key(value: Any) -> Optional[str]:
    ids = as_id_list(value)
    return ",".join(ids) if ids else None


# ---------------------------------------------------------------------------
# Behavior table
# ---------------------------------------------------------------------------

def _check_iso(value: str) -> str:
    parse_iso(value)
    return value


_Number = Union[StrictInt, StrictFloat]
_IsoString = Annotated[StrictStr, AfterValidator(_check_iso)]
_UserIds = Union[StrictStr, StrictInt, List[Union[StrictStr, StrictInt]]]


@dataclass(frozen=True)
class TypeBehavior:
    adapter: TypeAdapter
    operators: FrozenSet[FilterOperator]
    matcher: Optional[Callable[[FilterOperator, Any, Any], bool]]
    sort_key: Optional[Callable[[Any], Any]]
    numeric: bool = False
    # "options" (one bucket per option) or "users" (one bucket per user id)
    group_strategy: Optional[str] = None
    searchable: bool = False
    list_valued: bool = False

    @property
    def filterable(self) -> bool:
        return self.matcher is not None

    @property
    def sortable(self) -> bool:
        return self.sort_key is not None

    @property
    def groupable(self) -> bool:
        return self.group_strategy is not None


_TEXT = TypeBehavior(
    adapter=TypeAdapter(StrictStr),
    operators=TEXT_OPERATORS,
    matcher=_match_text,
    sort_key=_text_key,
    searchable=True,
)
_NUMBER = TypeBehavior(
    adapter=TypeAdapter(_Number),
    operators=NUMBER_OPERATORS,
    matcher=_match_number,
    sort_key=_number_key,
    numeric=True,
)
_SINGLE_CHOICE = TypeBehavior(
    adapter=TypeAdapter(StrictStr),
    operators=CHOICE_OPERATORS,
    matcher=_match_choice,
    sort_key=_ids_key,
    group_strategy="options",
)
_USERS = TypeBehavior(
    adapter=TypeAdapter(_UserIds),
    operators=CHOICE_OPERATORS,
    matcher=_match_choice,
    sort_key=_ids_key,
    group_strategy="users",
)

BEHAVIORS: Dict[PropertyType, TypeBehavior] = {
    PropertyType.TEXT: _TEXT,
    # Structured documents are opaque text for filter/sort/search
    PropertyType.RICH_TEXT: TypeBehavior(
        adapter=TypeAdapter(Union[StrictStr, Dict[str, Any], List[Any]]),
        operators=TEXT_OPERATORS,
        matcher=_match_text,
        sort_key=_text_key,
        searchable=True,
    ),
    PropertyType.NUMBER: _NUMBER,
    PropertyType.CURRENCY: _NUMBER,
    PropertyType.DATE: TypeBehavior(
        adapter=TypeAdapter(Union[DateValue, _IsoString]),
        operators=DATE_OPERATORS,
        matcher=_match_date,
        sort_key=date_timestamp,
    ),
    PropertyType.SELECT: _SINGLE_CHOICE,
    PropertyType.STATUS: _SINGLE_CHOICE,
    PropertyType.MULTI_SELECT: TypeBehavior(
        adapter=TypeAdapter(List[StrictStr]),
        operators=CHOICE_OPERATORS,
        matcher=_match_choice,
        sort_key=_ids_key,
        group_strategy="options",
        list_valued=True,
    ),
    PropertyType.CHECKBOX: TypeBehavior(
        adapter=TypeAdapter(StrictBool),
        operators=CHECKBOX_OPERATORS,
        matcher=_match_checkbox,
        sort_key=_boolean_key,
    ),
    PropertyType.PERSON: _USERS,
    PropertyType.USER: _USERS,
    PropertyType.ATTACHMENT: TypeBehavior(
        adapter=TypeAdapter(List[AttachmentValue]),
        operators=frozenset(),
        matcher=None,
        sort_key=None,
        list_valued=True,
    ),
}


def behavior_for(property_type: PropertyType) -> TypeBehavior:
    return BEHAVIORS[PropertyType(property_type)]


def validate_value(prop: Property, value: Any) -> Any:
    """Validate a value written to ``prop`` and return its stored JSON form.

    Raises ValidationError when the shape does not match the property type or
    when a select-family value references an option the property does not have.
    """
    behavior = behavior_for(prop.type)
    try:
        parsed = behavior.adapter.validate_python(value)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid value for property '{prop.name}' of type {prop.type.value}",
            details=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e

    if behavior.numeric and not math.isfinite(parsed):
        raise ValidationError(f"Value of property '{prop.name}' must be a finite number")

    if behavior.group_strategy == "options":
        known = set(prop.option_ids())
        unknown = [item for item in as_id_list(parsed) if item not in known]
        if unknown:
            raise ValidationError(
                f"Unknown option(s) for property '{prop.name}'", details={"options": unknown}
            )

    return behavior.adapter.dump_python(parsed, mode="json", by_alias=True)


def check_operator(prop: Property, operator: FilterOperator) -> None:
    behavior = behavior_for(prop.type)
    if not behavior.filterable:
        raise ValidationError(f"Property '{prop.name}' of type {prop.type.value} cannot be filtered")
    if FilterOperator(operator) not in behavior.operators:
        raise ValidationError(
            f"Operator '{FilterOperator(operator).value}' is not allowed for property "
            f"'{prop.name}' of type {prop.type.value}"
        )
