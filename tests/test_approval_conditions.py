"""Step condition parsing and evaluation."""

import pytest

from app.core.exceptions import ValidationError
from app.services.approval_conditions import (
    NumericRange,
    applies,
    condition_from_dict,
    parse_condition,
)


class TestParseCondition:
    def test_shorthand(self):
        assert parse_condition({"minAmount": 10000}) == NumericRange(field="amount", min=10000.0)
        assert parse_condition({"minAmount": 1, "maxAmount": 9}) == NumericRange(field="amount", min=1, max=9)

    def test_explicit(self):
        condition = parse_condition({"type": "numeric_range", "field": " total ", "max": 50.5})
        assert condition == NumericRange(field="total", max=50.5)

    def test_type_defaults_to_numeric_range(self):
        assert parse_condition({"field": "amount", "min": 0}).type == "numeric_range"

    @pytest.mark.parametrize("raw", [None, {}])
    def test_no_condition(self, raw):
        assert parse_condition(raw) is None

    @pytest.mark.parametrize("raw", [
        "amount > 10",
        {"type": "regex", "field": "amount", "min": 1},
        {"field": "amount"},
        {"min": 1},
        {"field": "amount", "min": "10"},
        {"field": "amount", "min": float("nan")},
        {"field": "amount", "min": True},
        {"minAmount": 10, "maxAmount": 5},
        {"minAmount": 10, "field": "total"},
    ])
    def test_malformed(self, raw):
        with pytest.raises(ValidationError):
            parse_condition(raw)

    def test_stored_form_round_trips(self):
        condition = parse_condition({"minAmount": 10000})
        assert condition_from_dict(condition.to_dict()) == condition
        assert condition_from_dict(None) is None


class TestApplies:
    @pytest.fixture()
    def range_(self):
        return NumericRange(field="amount", min=10000, max=20000)

    @pytest.mark.parametrize("amount,expected", [
        (9999, False),
        (10000, True),
        (15000.5, True),
        (20000, True),
        (20001, False),
        ("12000", True),
    ])
    def test_bounds_are_inclusive(self, range_, amount, expected):
        assert applies(range_, {"amount": amount}) is expected

    @pytest.mark.parametrize("data", [{}, {"amount": None}, {"amount": "lots"}, {"amount": True}, {"other": 15000}])
    def test_fails_closed(self, range_, data):
        assert applies(range_, data) is False

    def test_open_ended(self):
        assert applies(NumericRange(field="amount", max=9999), {"amount": -1}) is True
        assert applies(NumericRange(field="amount", min=0), {"amount": 10**9}) is True

    def test_no_condition_always_applies(self):
        assert applies(None, {}) is True
