from __future__ import annotations

import itertools

import pytest

from hl7_viewer.core.exceptions import InvalidCustomLogicError, InvalidFilterExpressionError
from hl7_viewer.hl7.address import Address
from hl7_viewer.hl7.filters import (
    MODE_AND,
    MODE_CUSTOM,
    MODE_OR,
    MODE_SINGLE,
    FilterCondition,
    build_filter_set,
    evaluate_condition,
    parse_filter_expression,
)
from hl7_viewer.hl7.parser import segment_messages


@pytest.mark.parametrize(
    "text, operator, value",
    [
        ("PID.5.1 = DOE", "=", "DOE"),
        ("PID.5.1=DOE", "=", "DOE"),
        ("PID.5.1 != DOE", "!=", "DOE"),
        ("PID.5.1!=DOE", "!=", "DOE"),
        ("PID.5 contains OH", "contains", "OH"),
        ("PID.5 CONTAINS oh", "contains", "oh"),
        ("PID.5 !contains OH", "!contains", "OH"),
        ("PID.5 exists", "exists", ""),
        ("PID.5 !EXISTS   ", "!exists", ""),
        ("PID.5.1 =", "=", ""),
        ("OBX.5 contains a=b", "contains", "a=b"),
        ("MSH.9 = ORU^R01", "=", "ORU^R01"),
        ("PID.5 = two words ", "=", "two words"),
    ],
)
def test_parse_filter_expressions(text: str, operator: str, value: str) -> None:
    condition = parse_filter_expression(text, "F1")
    assert condition is not None
    assert condition.operator == operator
    assert condition.value == value
    assert condition.label == "F1"


def test_not_equals_is_not_split_on_bare_equals() -> None:
    condition = parse_filter_expression("PID.8 != F")
    assert condition.address == Address("PID", 8)
    assert condition.operator == "!="
    assert condition.value == "F"


@pytest.mark.parametrize(
    "text",
    ["", "PID.5", "hello", "PID.0 = X", "XX = 1", "PID.5 like DOE", "= DOE", "PID.5 exists now"],
)
def test_parse_invalid_filter_expressions(text: str) -> None:
    assert parse_filter_expression(text) is None


def _condition(text: str) -> FilterCondition:
    condition = parse_filter_expression(text)
    assert condition is not None
    return condition


def test_evaluate_comparisons_ignore_case(two_messages: str) -> None:
    message = segment_messages(two_messages)[0]
    assert evaluate_condition(_condition("PID.5.1 = doe"), message)
    assert not evaluate_condition(_condition("PID.5.1 != doe"), message)
    assert evaluate_condition(_condition("PID.5 contains e^j"), message)
    assert evaluate_condition(_condition("PID.5 !contains SMITH"), message)
    assert evaluate_condition(_condition("PID.5 exists"), message)
    assert evaluate_condition(_condition("PID.99 !exists"), message)
    assert evaluate_condition(_condition("PID.4 ="), message)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("PV1.2 = I", False),
        ("PV1.2 contains I", False),
        ("PV1.2 exists", False),
        ("PV1.2 != I", True),
        ("PV1.2 !contains I", True),
        ("PV1.2 !exists", True),
        ("PV1.2 =", False),
    ],
)
def test_missing_segment_only_satisfies_negated_operators(
    two_messages: str, text: str, expected: bool
) -> None:
    message = segment_messages(two_messages)[0]
    assert evaluate_condition(_condition(text), message) is expected


def test_build_filter_set_labels_list_entries_by_position() -> None:
    filter_set = build_filter_set(["PID.5.1 = DOE", "", "PID.8 exists"])
    assert filter_set.labels == ["F1", "F3"]
    assert filter_set.mode == MODE_AND


def test_build_filter_set_returns_none_without_entries() -> None:
    assert build_filter_set(None) is None
    assert build_filter_set([]) is None
    assert build_filter_set(["  ", ""]) is None


def test_build_filter_set_names_every_invalid_label() -> None:
    with pytest.raises(InvalidFilterExpressionError) as excinfo:
        build_filter_set(["PID.5 = X", "nonsense", "PID.x exists"])
    assert excinfo.value.labels == ("F2", "F3")
    assert "F2" in excinfo.value.message
    assert "F3" in excinfo.value.message


def test_single_mode_requires_exactly_one_condition() -> None:
    assert build_filter_set(["PID.5 exists"], mode="single").mode == MODE_SINGLE
    with pytest.raises(InvalidFilterExpressionError):
        build_filter_set(["PID.5 exists", "PID.3 exists"], mode="single")


def test_mode_names_are_case_insensitive() -> None:
    assert build_filter_set(["PID.5 exists"], mode="or").mode == MODE_OR
    assert build_filter_set(["PID.5 exists"], mode="And").mode == MODE_AND
    assert build_filter_set(["PID.5 exists"], mode="CUSTOM", logic="F1").mode == MODE_CUSTOM


def test_unknown_mode_is_rejected() -> None:
    with pytest.raises(InvalidCustomLogicError):
        build_filter_set(["PID.5 exists"], mode="XOR")


def test_custom_mode_requires_valid_logic() -> None:
    with pytest.raises(InvalidCustomLogicError):
        build_filter_set(["PID.5 exists"], mode="custom", logic="")
    with pytest.raises(InvalidCustomLogicError) as excinfo:
        build_filter_set(["PID.5 exists"], mode="custom", logic="F1 AND F9")
    assert excinfo.value.labels == ("F9",)


def test_mapping_entries_keep_their_labels() -> None:
    filter_set = build_filter_set(
        {"female": "PID.8 = F", "inpatient": "PV1.2 = I"},
        mode="custom",
        logic="female OR NOT inpatient",
    )
    assert filter_set.labels == ["female", "inpatient"]


def test_invalid_and_duplicate_labels_are_rejected() -> None:
    with pytest.raises(InvalidFilterExpressionError):
        build_filter_set({"AND": "PID.5 exists"})
    with pytest.raises(InvalidFilterExpressionError):
        build_filter_set({"my label": "PID.5 exists"})
    with pytest.raises(InvalidFilterExpressionError):
        build_filter_set({"f1": "PID.5 exists", "F1": "PID.3 exists"})


def test_custom_logic_includes_and_excludes(lab_results: str) -> None:
    messages = segment_messages(lab_results)
    filter_set = build_filter_set(
        ["PID.8 = F", "PV1.2 = I"], mode="custom", logic="F1 AND NOT F2"
    )
    # Message 2 is female outpatient, message 3 female without PV1
    assert [filter_set.includes(message) for message in messages] == [False, True, True]


@pytest.mark.parametrize("count", [2, 3, 4, 5])
def test_and_or_modes_match_conjunction_and_disjunction(two_messages: str, count: int) -> None:
    message = segment_messages(two_messages)[0]
    for outcomes in itertools.product([True, False], repeat=count):
        # "exists" holds and "!exists" fails for a populated field
        expressions = ["PID.5 exists" if outcome else "PID.5 !exists" for outcome in outcomes]
        for permutation in itertools.permutations(expressions):
            and_set = build_filter_set(list(permutation), mode="AND")
            or_set = build_filter_set(list(permutation), mode="OR")
            assert and_set.includes(message) is all(outcomes)
            assert or_set.includes(message) is any(outcomes)
