from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Union

from taskgrid.core.exceptions import ValidationError
from taskgrid.schemas.property import Property
from taskgrid.schemas.view import AggregationConfig, AggregationType
from taskgrid.services.property_types import behavior_for, is_empty, to_number
from taskgrid.services.schema_index import SchemaIndex

Number = Union[int, float]

NUMERIC_AGGREGATIONS = frozenset({
    AggregationType.SUM,
    AggregationType.AVERAGE,
    AggregationType.MIN,
    AggregationType.MAX,
    AggregationType.RANGE,
    AggregationType.MEDIAN,
})


def _round_half_up(value: float, places: int = 0) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP)


def _clean(value: float) -> Number:
    return int(value) if float(value).is_integer() else value


def numeric_values(values: Iterable[Any]) -> List[float]:
    """Non-empty values that coerce to a finite number"""
    numbers = (to_number(value) for value in values if not is_empty(value))
    return [number for number in numbers if number is not None]


def median(numbers: List[float]) -> Optional[float]:
    if not numbers:
        return None
    ordered = sorted(numbers)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2


def percent(part: int, total: int) -> int:
    if total == 0:
        return 0
    return int(_round_half_up(part * 100 / total))


def aggregate(aggregation_type: AggregationType, values: List[Any]) -> Optional[Number]:
    """Compute one aggregation over the raw values of a column.

    ``values`` holds one entry per task, None for tasks without a value.
    """
    aggregation_type = AggregationType(aggregation_type)
    total = len(values)

    if aggregation_type not in NUMERIC_AGGREGATIONS:
        empty = sum(1 for value in values if is_empty(value))
        if aggregation_type == AggregationType.COUNT:
            return total
        if aggregation_type == AggregationType.COUNT_EMPTY:
            return empty
        if aggregation_type == AggregationType.COUNT_NOT_EMPTY:
            return total - empty
        if aggregation_type == AggregationType.PERCENT_EMPTY:
            return percent(empty, total)
        return percent(total - empty, total)

    numbers = numeric_values(values)
    if aggregation_type == AggregationType.SUM:
        return _clean(sum(numbers))
    if not numbers:
        return None
    if aggregation_type == AggregationType.AVERAGE:
        return _clean(float(_round_half_up(sum(numbers) / len(numbers), 2)))
    if aggregation_type == AggregationType.MIN:
        return _clean(min(numbers))
    if aggregation_type == AggregationType.MAX:
        return _clean(max(numbers))
    if aggregation_type == AggregationType.RANGE:
        return _clean(max(numbers) - min(numbers))
    return _clean(median(numbers))


def check_aggregation(prop: Property, aggregation_type: AggregationType) -> None:
    if AggregationType(aggregation_type) in NUMERIC_AGGREGATIONS and not behavior_for(prop.type).numeric:
        raise ValidationError(
            f"Aggregation '{AggregationType(aggregation_type).value}' needs a number or currency "
            f"property, '{prop.name}' is {prop.type.value}"
        )


def compute_aggregates(
    configs: Optional[List[AggregationConfig]], tasks: List[Any], schema: SchemaIndex
) -> Dict[str, Dict[str, Any]]:
    """Aggregates keyed by property id, over the filtered (ungrouped) tasks.

    Entries naming a property that no longer exists are skipped.
    """
    results: Dict[str, Dict[str, Any]] = {}
    for config in configs or []:
        prop = schema.get(config.property_id)
        if prop is None:
            continue
        check_aggregation(prop, config.aggregation_type)
        values = [(getattr(task, "properties", None) or {}).get(prop.id) for task in tasks]
        results[prop.id] = {
            "type": config.aggregation_type,
            "value": aggregate(config.aggregation_type, values),
        }
    return results
