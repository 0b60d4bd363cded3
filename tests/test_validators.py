import pytest

from sievelab.services.snapshot import GridSnapshot
from sievelab.services.validators import (
    MONOTONIC_REASON,
    RANGE_REASON,
    Severity,
    has_errors,
    is_calculable,
    message_for_cell,
    next_case_name,
    parse_passing,
    parse_sieve_size,
    validate_cases,
)


def _snap(sizes, columns):
    cases = tuple(columns)
    values = tuple(tuple(columns[c][i] for c in cases) for i in range(len(sizes)))
    return GridSnapshot(tuple(float(s) for s in sizes), cases, values)


def test_single_warning_at_monotonic_violation():
    snap = _snap([53, 19, 4.75, 0.425], {"Case 1": ["100", "80", "80", "85"]})
    messages = validate_cases(snap)
    assert len(messages) == 1
    m = messages[0]
    assert m.severity is Severity.WARNING
    assert m.sieve_size == 0.425
    assert m.case_name == "Case 1"
    assert m.reason == MONOTONIC_REASON
    assert is_calculable(messages)


def test_scan_order_ignores_grid_row_order():
    # Ascending on screen; the scan still runs largest opening first.
    snap = _snap([0.425, 4.75, 19, 53], {"Case 1": ["85", "80", "80", "100"]})
    messages = validate_cases(snap)
    assert [(m.sieve_size, m.severity) for m in messages] == [(0.425, Severity.WARNING)]
    assert messages[0].row_index == 0


def test_out_of_range_is_error_and_does_not_move_reference():
    snap = _snap([53, 19, 4.75], {"Case 1": ["100", "150", "90"]})
    messages = validate_cases(snap)
    assert len(messages) == 1
    assert messages[0].severity is Severity.ERROR
    assert messages[0].sieve_size == 19
    assert messages[0].reason == RANGE_REASON
    assert has_errors(messages)
    assert not is_calculable(messages)


def test_negative_value_is_error():
    snap = _snap([10, 1], {"A": ["-0.1", "0"]})
    messages = validate_cases(snap)
    assert [m.severity for m in messages] == [Severity.ERROR]


def test_bounds_are_inclusive():
    snap = _snap([10, 1], {"A": ["100", "0"]})
    assert validate_cases(snap) == []


def test_warning_updates_reference():
    # 60 -> 70 warns; 65 is compared against 70, so it is fine.
    snap = _snap([10, 5, 2, 1], {"A": ["90", "60", "70", "65"]})
    messages = validate_cases(snap)
    assert [m.sieve_size for m in messages] == [2]


def test_blank_values_are_skipped():
    snap = _snap([10, 5, 1], {"A": ["90", "  ", "95"]})
    messages = validate_cases(snap)
    assert [(m.sieve_size, m.severity) for m in messages] == [(1, Severity.WARNING)]


def test_non_numeric_text_is_error():
    snap = _snap([10, 1], {"A": ["abc", "10"]})
    messages = validate_cases(snap)
    assert len(messages) == 1
    assert messages[0].severity is Severity.ERROR
    assert messages[0].sieve_size == 10


def test_unset_rows_are_not_scanned():
    snap = _snap([0, 10, 1], {"A": ["150", "90", "10"]})
    assert validate_cases(snap) == []


def test_messages_are_per_case():
    snap = _snap([10, 1], {"A": ["10", "20"], "B": ["50", "500"]})
    messages = validate_cases(snap)
    assert {(m.case_name, m.severity) for m in messages} == {
        ("A", Severity.WARNING),
        ("B", Severity.ERROR),
    }
    assert message_for_cell(messages, 1, "B").severity is Severity.ERROR
    assert message_for_cell(messages, 0, "A") is None


def test_validation_is_repeatable():
    snap = _snap([53, 19, 4.75, 0.425], {"A": ["100", "80", "150", "85"], "B": ["x", "", "3", "4"]})
    assert validate_cases(snap) == validate_cases(snap)


@pytest.mark.parametrize(
    "raw, expected",
    [("", None), ("   ", None), (None, None), ("12.5", 12.5), (" 7 ", 7.0), (3, 3.0)],
)
def test_parse_passing(raw, expected):
    assert parse_passing(raw) == expected


@pytest.mark.parametrize("raw", ["abc", "nan", "inf", "1,5"])
def test_parse_passing_rejects(raw):
    with pytest.raises(ValueError):
        parse_passing(raw)


def test_parse_sieve_size_defaults_to_zero():
    assert parse_sieve_size("4.75") == 4.75
    assert parse_sieve_size("") == 0.0
    assert parse_sieve_size("mesh") == 0.0


def test_next_case_name():
    assert next_case_name(["Case 1", "Case 2"]) == "Case 3"
    assert next_case_name(["Case 1", "Case 7"]) == "Case 8"
    assert next_case_name(["Fine", "Coarse"]) == "Case 3"
    assert next_case_name([]) == "Case 1"
