import pytest

from taskgrid.core.exceptions import ValidationError
from taskgrid.schemas.property import Property, PropertyOption, PropertyType
from taskgrid.schemas.view import FilterOperator
from taskgrid.services.property_types import (
    as_id_list,
    behavior_for,
    check_operator,
    date_timestamp,
    is_empty,
    text_of,
    to_number,
    validate_value,
)


def make_property(type_, options=None, prop_id="p1", name="Prop"):
    return Property(id=prop_id, name=name, type=type_, options=options)


class TestPropertyType:
    """Property type names and property definitions"""

    def test_hyphenated_names_are_normalized(self):
        assert PropertyType("multi-select") is PropertyType.MULTI_SELECT
        assert PropertyType("rich-text") is PropertyType.RICH_TEXT
        assert PropertyType("status") is PropertyType.STATUS

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValueError):
            PropertyType("formula")

    def test_stored_property_with_legacy_type(self):
        prop = Property.model_validate({
            "id": "tags",
            "name": "Tags",
            "type": "multi-select",
            "order": 0,
            "options": [{"id": "a", "label": "A", "color": "red"}],
        })
        assert prop.type is PropertyType.MULTI_SELECT
        assert prop.option_ids() == ["a"]

    def test_options_only_kept_for_select_family(self):
        prop = Property(name="Estimate", type=PropertyType.NUMBER, options=[PropertyOption(label="x")])
        assert prop.options is None

        status = Property(name="Status", type=PropertyType.STATUS)
        assert status.options == []

    def test_duplicate_option_ids_are_rejected(self):
        with pytest.raises(ValueError):
            Property(
                name="Status",
                type=PropertyType.SELECT,
                options=[PropertyOption(id="a", label="A"), PropertyOption(id="a", label="B")],
            )

    def test_option_labels_may_repeat(self):
        prop = Property(
            name="Status",
            type=PropertyType.SELECT,
            options=[PropertyOption(id="a", label="Same"), PropertyOption(id="b", label="Same")],
        )
        assert len(prop.options) == 2


class TestValidateValue:
    """Written values are checked against their property type"""

    def test_text(self):
        prop = make_property(PropertyType.TEXT)
        assert validate_value(prop, "hello") == "hello"
        with pytest.raises(ValidationError):
            validate_value(prop, 5)

    def test_rich_text_accepts_structured_document(self):
        prop = make_property(PropertyType.RICH_TEXT)
        document = {"root": {"children": [{"text": "Hello"}]}}
        assert validate_value(prop, document) == document

    def test_number_rejects_booleans_and_strings(self):
        prop = make_property(PropertyType.NUMBER)
        assert validate_value(prop, 3.5) == 3.5
        assert validate_value(prop, 7) == 7
        with pytest.raises(ValidationError):
            validate_value(prop, True)
        with pytest.raises(ValidationError):
            validate_value(prop, "5")

    def test_currency_behaves_as_number(self):
        prop = make_property(PropertyType.CURRENCY)
        assert validate_value(prop, 19.99) == 19.99
        assert behavior_for(PropertyType.CURRENCY).numeric

    def test_date_object_form(self):
        prop = make_property(PropertyType.DATE)
        value = {"from": "2024-01-05", "to": None, "hasTime": False}
        assert validate_value(prop, value) == value

    def test_date_bare_string_form(self):
        prop = make_property(PropertyType.DATE)
        assert validate_value(prop, "2024-01-05T10:00:00Z") == "2024-01-05T10:00:00Z"

    def test_date_rejects_garbage(self):
        prop = make_property(PropertyType.DATE)
        with pytest.raises(ValidationError):
            validate_value(prop, "next tuesday")
        with pytest.raises(ValidationError):
            validate_value(prop, {"from": "yesterday"})

    def test_select_must_reference_existing_option(self):
        prop = make_property(PropertyType.SELECT, options=[PropertyOption(id="todo", label="To Do")])
        assert validate_value(prop, "todo") == "todo"
        with pytest.raises(ValidationError) as exc_info:
            validate_value(prop, "gone")
        assert exc_info.value.details == {"options": ["gone"]}

    def test_multi_select_needs_a_list(self):
        prop = make_property(
            PropertyType.MULTI_SELECT,
            options=[PropertyOption(id="a", label="A"), PropertyOption(id="b", label="B")],
        )
        assert validate_value(prop, ["a", "b"]) == ["a", "b"]
        with pytest.raises(ValidationError):
            validate_value(prop, "a")

    def test_checkbox(self):
        prop = make_property(PropertyType.CHECKBOX)
        assert validate_value(prop, False) is False
        with pytest.raises(ValidationError):
            validate_value(prop, "true")

    def test_person_accepts_single_id_and_list(self):
        prop = make_property(PropertyType.PERSON)
        assert validate_value(prop, "u1") == "u1"
        assert validate_value(prop, 5) == 5
        assert validate_value(prop, ["u1", 2]) == ["u1", 2]

    def test_attachment(self):
        prop = make_property(PropertyType.ATTACHMENT)
        files = [{"id": "f1", "name": "a.png", "url": "/files/a.png", "type": "image/png", "size": 10}]
        assert validate_value(prop, files) == files
        with pytest.raises(ValidationError):
            validate_value(prop, [{"name": "a.png"}])


class TestValueHelpers:
    def test_is_empty(self):
        assert is_empty(None)
        assert is_empty("")
        assert is_empty([])
        assert is_empty({"from": None, "to": None, "hasTime": False})
        assert not is_empty(0)
        assert not is_empty(False)
        assert not is_empty("x")

    def test_to_number(self):
        assert to_number(10) == 10.0
        assert to_number(" 12.5 ") == 12.5
        assert to_number("abc") is None
        assert to_number(True) is None
        assert to_number(float("nan")) is None
        assert to_number(None) is None

    def test_date_forms_reduce_to_same_instant(self):
        assert date_timestamp("2024-03-01") == date_timestamp({"from": "2024-03-01", "to": None})
        assert date_timestamp("2024-03-01T00:00:00") == date_timestamp("2024-03-01T00:00:00Z")
        assert date_timestamp({"from": None}) is None
        assert date_timestamp("garbage") is None

    def test_as_id_list(self):
        assert as_id_list(5) == ["5"]
        assert as_id_list(["a", None, "b"]) == ["a", "b"]
        assert as_id_list(None) == []

    def test_text_of_flattens_documents(self):
        assert text_of({"root": {"children": [{"text": "Hello"}, {"text": "World"}]}}) == "Hello World"


class TestOperators:
    def test_operator_sets_per_type(self):
        check_operator(make_property(PropertyType.TEXT), FilterOperator.CONTAINS)
        check_operator(make_property(PropertyType.NUMBER), FilterOperator.GREATER_OR_EQUAL)
        check_operator(make_property(PropertyType.DATE), FilterOperator.BEFORE)
        check_operator(make_property(PropertyType.STATUS), FilterOperator.IS_EMPTY)
        check_operator(make_property(PropertyType.CHECKBOX), FilterOperator.EQUALS)
        check_operator(make_property(PropertyType.USER), FilterOperator.NOT_EQUALS)

    def test_operator_not_allowed_for_type(self):
        with pytest.raises(ValidationError):
            check_operator(make_property(PropertyType.NUMBER), FilterOperator.CONTAINS)
        with pytest.raises(ValidationError):
            check_operator(make_property(PropertyType.CHECKBOX), FilterOperator.IS_EMPTY)
        with pytest.raises(ValidationError):
            check_operator(make_property(PropertyType.SELECT), FilterOperator.GREATER_THAN)

    def test_attachment_cannot_be_filtered(self):
        with pytest.raises(ValidationError):
            check_operator(make_property(PropertyType.ATTACHMENT), FilterOperator.EQUALS)
