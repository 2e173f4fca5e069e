"""Tests for condition evaluation."""

import pytest

from workflow.conditions import (
    describe_condition,
    evaluate,
    evaluate_condition,
    evaluate_conditions,
    to_datetime,
    to_number,
)

CTX = {
    "deal": {"value": 1500, "stage": "Negotiation", "closed": False, "amount_text": "1500.50"},
    "contact": {"email": "ada@example.com", "tags": ["VIP", "beta"], "phone": "", "notes": None},
    "task": {"due": "2024-03-05T10:00:00Z"},
}


@pytest.mark.unit
class TestEquality:

    def test_number_and_numeric_string(self):
        assert evaluate("count", "equals", "5", {"count": 5}) is True
        assert evaluate("count", "gt", 3, {"count": "4"}) is True
        assert evaluate("deal.value", "equals", "1500", CTX) is True
        assert evaluate("deal.amount_text", "equals", 1500.5, CTX) is True

    def test_case_insensitive_strings(self):
        assert evaluate("deal.stage", "equals", "negotiation", CTX) is True
        assert evaluate("deal.stage", "not_equals", "Won", CTX) is True

    def test_booleans(self):
        assert evaluate("deal.closed", "equals", False, CTX) is True
        assert evaluate("deal.closed", "equals", "false", CTX) is True
        assert evaluate("deal.closed", "equals", 0, CTX) is False

    def test_missing_field_only_equals_none(self):
        assert evaluate("deal.owner", "equals", None, CTX) is True
        assert evaluate("deal.owner", "equals", "", CTX) is False


@pytest.mark.unit
class TestStringOperators:

    def test_contains_substring(self):
        assert evaluate("contact.email", "contains", "EXAMPLE", CTX) is True
        assert evaluate("contact.email", "not_contains", "acme", CTX) is True

    def test_contains_list_member(self):
        assert evaluate("contact.tags", "contains", "vip", CTX) is True
        assert evaluate("contact.tags", "contains", "gold", CTX) is False

    def test_starts_and_ends_with(self):
        assert evaluate("contact.email", "starts_with", "Ada", CTX) is True
        assert evaluate("contact.email", "ends_with", ".com", CTX) is True
        assert evaluate("deal.value", "starts_with", "15", CTX) is False


@pytest.mark.unit
class TestOrdering:

    def test_numeric(self):
        assert evaluate("deal.value", "gt", 1000, CTX) is True
        assert evaluate("deal.value", "gte", "1500", CTX) is True
        assert evaluate("deal.value", "lt", 1500, CTX) is False
        assert evaluate("deal.value", "lte", 1500, CTX) is True

    def test_dates(self):
        assert evaluate("task.due", "lt", "2024-03-06", CTX) is True
        assert evaluate("task.due", "gt", "2024-03-05T09:59:59+00:00", CTX) is True

    def test_missing_field_never_orders(self):
        assert evaluate("deal.missing", "gt", 0, CTX) is False
        assert evaluate("deal.missing", "lt", 0, CTX) is False


@pytest.mark.unit
class TestEmptinessAndMembership:

    def test_is_empty(self):
        assert evaluate("contact.phone", "is_empty", None, CTX) is True
        assert evaluate("contact.notes", "is_empty", None, CTX) is True
        assert evaluate("contact.tags", "is_not_empty", None, CTX) is True

    def test_in_and_not_in(self):
        assert evaluate("deal.stage", "in", ["Won", "negotiation"], CTX) is True
        assert evaluate("deal.stage", "not_in", ["Won", "Lost"], CTX) is True
        assert evaluate("deal.stage", "in", "Negotiation", CTX) is False


@pytest.mark.unit
class TestFailClosed:

    def test_unknown_operator_is_false(self):
        assert evaluate("deal.value", "roughly", 1500, CTX) is False

    def test_unknown_operator_negation_is_also_false(self):
        assert evaluate("deal.value", "not_roughly", 1, CTX) is False


@pytest.mark.unit
class TestCombinators:

    def test_and_or(self):
        conditions = [
            {"field": "deal.value", "operator": "gt", "value": 1000},
            {"field": "deal.stage", "operator": "equals", "value": "Won"},
        ]
        assert evaluate_conditions(conditions, CTX, "and") is False
        assert evaluate_conditions(conditions, CTX, "or") is True

    def test_empty_list_is_true(self):
        assert evaluate_conditions([], CTX) is True

    def test_evaluate_condition_mapping(self):
        assert evaluate_condition({"field": "contact.tags", "operator": "contains", "value": "beta"}, CTX)

    def test_describe(self):
        assert describe_condition({"field": "deal.value", "operator": "gt", "value": 1000}) == (
            "deal.value is greater than 1000"
        )
        assert describe_condition({"field": "contact.phone", "operator": "is_empty"}) == (
            "contact.phone is empty"
        )
        assert describe_condition({"field": "deal.stage", "operator": "in", "value": ["Won", "Lost"]}) == (
            "deal.stage is one of [Won, Lost]"
        )


@pytest.mark.unit
class TestCoercion:

    def test_to_number(self):
        assert to_number(" 42 ") == 42.0
        assert to_number("") == 0.0
        assert to_number("4e2") == 400.0
        assert to_number("12abc") is None
        assert to_number(True) is None

    def test_to_datetime(self):
        parsed = to_datetime("2024-03-05T10:00:00Z")
        assert parsed.isoformat() == "2024-03-05T10:00:00+00:00"
        assert to_datetime("not a date") is None
        assert to_datetime(0).year == 1970
