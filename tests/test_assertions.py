import pytest

from engine.assertions import assert_condition
from engine.errors import AssertionMismatch, UnsupportedCondition


@pytest.mark.parametrize(
    "actual, expected, operator",
    [
        ("Welcome", "Welcome", "equals"),
        ("https://app.test/home?x=1", "/home", "contains"),
        (True, None, "true"),
        ("true", None, "true"),
        (False, None, "false"),
        ("5", "3", "greaterThan"),
        (3, "5", "lessThan"),
        (2.5, "2.49", "greaterThan"),
        (True, "True", "equals"),
        (False, "false", "equals"),
    ],
)
def test_passing_comparisons(actual, expected, operator):
    assert_condition(actual, expected, operator)


@pytest.mark.parametrize(
    "actual, expected, operator",
    [
        ("Welcome", "welcome", "equals"),
        ("https://app.test/login", "/home", "contains"),
        (False, None, "true"),
        (True, None, "false"),
        ("3", "3", "greaterThan"),
        ("5", "3", "lessThan"),
        (True, "FALSE", "equals"),
    ],
)
def test_failing_comparisons(actual, expected, operator):
    with pytest.raises(AssertionMismatch):
        assert_condition(actual, expected, operator)


def test_non_numeric_values_fail_numeric_operators():
    with pytest.raises(AssertionMismatch):
        assert_condition("many", "3", "greaterThan")

    with pytest.raises(AssertionMismatch):
        assert_condition("4", "a few", "lessThan")


def test_unknown_operator_is_a_configuration_error():
    with pytest.raises(UnsupportedCondition):
        assert_condition("a", "a", "approximately")


def test_mismatch_carries_actual_and_expected():
    with pytest.raises(AssertionMismatch) as excinfo:
        assert_condition("7", "8", "equals")

    assert excinfo.value.details == {"actual": "7", "expected": "8", "operator": "equals"}
