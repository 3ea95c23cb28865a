from types import SimpleNamespace

import pytest

from taskgrid.core.exceptions import ValidationError
from taskgrid.schemas.property import Property, PropertyOption, PropertyType
from taskgrid.schemas.view import AggregationConfig, AggregationType
from taskgrid.services.aggregation_service import aggregate, check_aggregation, compute_aggregates, percent
from taskgrid.services.schema_index import SchemaIndex


class TestAggregate:
    """Column aggregations over raw task values"""

    def test_sum_skips_non_numeric_values(self):
        assert aggregate(AggregationType.SUM, [10, "abc", None, 5]) == 15

    def test_sum_of_nothing_is_zero(self):
        assert aggregate(AggregationType.SUM, [None, None]) == 0

    def test_median(self):
        assert aggregate(AggregationType.MEDIAN, [1, 3]) == 2
        assert aggregate(AggregationType.MEDIAN, [3, 1, 2]) == 2
        assert aggregate(AggregationType.MEDIAN, [1, 2]) == 1.5

    def test_average_is_rounded_to_two_places(self):
        assert aggregate(AggregationType.AVERAGE, [1, 2, 2]) == 1.67
        assert aggregate(AggregationType.AVERAGE, [2, 4]) == 3

    def test_min_max_range(self):
        values = [4, "7", None, -2]
        assert aggregate(AggregationType.MIN, values) == -2
        assert aggregate(AggregationType.MAX, values) == 7
        assert aggregate(AggregationType.RANGE, values) == 9

    def test_numeric_aggregations_without_numbers(self):
        assert aggregate(AggregationType.AVERAGE, [None, "x"]) is None
        assert aggregate(AggregationType.MEDIAN, []) is None

    def test_counts(self):
        values = ["a", None, "", [], "b"]
        assert aggregate(AggregationType.COUNT, values) == 5
        assert aggregate(AggregationType.COUNT_EMPTY, values) == 3
        assert aggregate(AggregationType.COUNT_NOT_EMPTY, values) == 2

    def test_percentages_round_half_up(self):
        values = ["a", None, None, None, None, None, None, None]
        assert aggregate(AggregationType.PERCENT_NOT_EMPTY, values) == 13
        assert aggregate(AggregationType.PERCENT_EMPTY, values) == 88
        assert percent(1, 3) == 33
        assert percent(0, 0) == 0

    def test_percent_of_empty_column(self):
        assert aggregate(AggregationType.PERCENT_EMPTY, []) == 0


class TestComputeAggregates:
    def setup_method(self):
        self.schema = SchemaIndex([
            Property(id="points", name="Points", type=PropertyType.NUMBER, order=0),
            Property(id="status", name="Status", type=PropertyType.STATUS, order=1, options=[
                PropertyOption(id="todo", label="To Do"),
            ]),
        ])

    def make_rows(self, *values):
        return [SimpleNamespace(properties={"points": value} if value is not None else {})
                for value in values]

    def test_results_keyed_by_property(self):
        configs = [
            AggregationConfig(property_id="points", aggregation_type=AggregationType.SUM),
            AggregationConfig.model_validate({"propertyId": "status", "type": "count_empty"}),
        ]
        result = compute_aggregates(configs, self.make_rows(1, None, 4), self.schema)
        assert result["points"]["value"] == 5
        assert result["status"] == {"type": AggregationType.COUNT_EMPTY, "value": 3}

    def test_removed_property_is_skipped(self):
        configs = [AggregationConfig(property_id="gone", aggregation_type=AggregationType.SUM)]
        assert compute_aggregates(configs, self.make_rows(1), self.schema) == {}

    def test_numeric_aggregation_needs_numeric_property(self):
        with pytest.raises(ValidationError):
            check_aggregation(self.schema.require("status"), AggregationType.SUM)
        check_aggregation(self.schema.require("status"), AggregationType.COUNT)
