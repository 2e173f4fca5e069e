"""Tests for template interpolation and context path access."""

import pytest

from workflow.templating import (
    extract_template_variables,
    get_nested_value,
    has_template_variables,
    interpolate_object,
    interpolate_template,
    set_nested_value,
    stringify,
    validate_template_variables,
)

CTX = {
    "contact": {"first_name": "Ada", "email": "ada@example.com", "tags": ["vip", "beta"]},
    "steps": {"0": {"contact": {"id": "c-1"}, "items": [{"name": "first"}, {"name": "second"}]}},
    "trigger": {"data": {"count": 3, "ratio": 2.0, "active": True, "nothing": None}},
    "organization_id": "org1",
}


@pytest.mark.unit
class TestGetNestedValue:

    def test_dot_path(self):
        assert get_nested_value(CTX, "contact.first_name") == "Ada"

    def test_numeric_key_into_steps(self):
        assert get_nested_value(CTX, "steps.0.contact.id") == "c-1"

    def test_bracket_index(self):
        assert get_nested_value(CTX, "steps.0.items[1].name") == "second"
        assert get_nested_value(CTX, "steps.0.items.0.name") == "first"

    def test_missing_segment_is_none(self):
        assert get_nested_value(CTX, "contact.phone") is None
        assert get_nested_value(CTX, "company.name") is None
        assert get_nested_value(CTX, "steps.0.items.5.name") is None

    def test_non_container_root(self):
        assert get_nested_value("text", "a") is None
        assert get_nested_value(CTX, "") is None

    def test_set_nested_value_creates_parents(self):
        target = {"a": 1}
        set_nested_value(target, "b.c.d", "x")
        assert target == {"a": 1, "b": {"c": {"d": "x"}}}


@pytest.mark.unit
class TestInterpolateTemplate:

    def test_simple_placeholder(self):
        assert interpolate_template("Hi {{contact.first_name}}", CTX) == "Hi Ada"

    def test_whitespace_inside_braces(self):
        assert interpolate_template("{{ contact.email }}", CTX) == "ada@example.com"

    def test_missing_renders_empty(self):
        assert interpolate_template("[{{contact.phone}}]", CTX) == "[]"
        assert interpolate_template("[{{trigger.data.nothing}}]", CTX) == "[]"

    def test_scalars(self):
        assert interpolate_template("{{trigger.data.count}}", CTX) == "3"
        assert interpolate_template("{{trigger.data.ratio}}", CTX) == "2"
        assert interpolate_template("{{trigger.data.active}}", CTX) == "true"

    def test_collections_render_as_compact_json(self):
        assert interpolate_template("{{contact.tags}}", CTX) == '["vip","beta"]'
        assert interpolate_template("{{steps.0.contact}}", CTX) == '{"id":"c-1"}'

    def test_non_string_passthrough(self):
        assert interpolate_template(42, CTX) == 42
        assert interpolate_template(None, CTX) is None
        assert interpolate_template("", CTX) == ""

    def test_nested_templates_are_expanded(self):
        ctx = {"greeting": "Hello {{name}}", "name": "Ada"}
        assert interpolate_template("{{greeting}}!", ctx) == "Hello Ada!"

    def test_self_referencing_template_stops(self):
        ctx = {"loop": "{{loop}}"}
        assert interpolate_template("{{loop}}", ctx) == "{{loop}}"

    def test_interpolate_object(self):
        obj = {
            "subject": "Hi {{contact.first_name}}",
            "recipients": ["{{contact.email}}", "ops@example.com"],
            "retries": 3,
        }
        assert interpolate_object(obj, CTX) == {
            "subject": "Hi Ada",
            "recipients": ["ada@example.com", "ops@example.com"],
            "retries": 3,
        }


@pytest.mark.unit
class TestTemplateIntrospection:

    def test_has_template_variables(self):
        assert has_template_variables("{{a}}") is True
        assert has_template_variables("plain") is False
        assert has_template_variables(5) is False

    def test_extract_is_distinct_and_ordered(self):
        assert extract_template_variables("{{b}} {{ a }} {{b}}") == ["b", "a"]

    def test_validate_known_fields(self):
        valid, missing = validate_template_variables(
            {"to": "{{contact.email}}", "body": ["{{steps.2.output}}", "{{mystery.value}}"]}
        )
        assert valid is False
        assert missing == ["mystery.value"]

    def test_validate_custom_fields(self):
        assert validate_template_variables("{{deal.value}}", ["deal"]) == (True, [])

    def test_loop_fields_are_not_standard(self):
        assert validate_template_variables("{{loop.item}}") == (False, ["loop.item"])


def test_stringify_none_and_bool():
    assert stringify(None) == ""
    assert stringify(False) == "false"
