import math

import pytest

from sievelab.services.gradation import (
    GATE_BATCH,
    GATE_CASE,
    CaseResult,
    Outcome,
    SievePoint,
    analyze,
    compute_case_result,
    curvature_coefficient,
    interpolate_size,
    result_is_complete,
    uniformity_coefficient,
    usable_points,
)
from sievelab.services.snapshot import GridSnapshot, default_snapshot, with_value


def _pts(*pairs):
    return [SievePoint(float(s), float(p)) for s, p in pairs]


def _snap(sizes, columns):
    cases = tuple(columns)
    values = tuple(tuple(columns[c][i] for c in cases) for i in range(len(sizes)))
    return GridSnapshot(tuple(float(s) for s in sizes), cases, values)


WELL_GRADED = [(53, 100), (19, 85), (4.75, 62), (2.36, 48), (0.425, 22), (0.075, 6)]


def test_exact_hit_returns_measured_size():
    pts = _pts((10, 10), (1, 60), (0.1, 90))
    assert interpolate_size(pts, 60) == 1.0
    assert interpolate_size(pts, 10) == 10.0
    assert interpolate_size(pts, 90) == 0.1


def test_log_linear_between_points():
    pts = _pts((10, 10), (1, 60))
    # Halfway in percent is halfway in log10(size).
    assert interpolate_size(pts, 35) == pytest.approx(math.sqrt(10.0), rel=1e-12)
    expected = 10 ** (1 + (0 - 1) * (30 - 10) / (60 - 10))
    assert interpolate_size(pts, 30) == pytest.approx(expected, rel=1e-12)


def test_above_observed_span_is_out_of_range():
    assert interpolate_size(_pts((10, 20), (1, 80)), 90) is Outcome.OUT_OF_RANGE


def test_below_observed_span_is_out_of_range():
    assert interpolate_size(_pts((10, 20), (1, 80)), 10) is Outcome.OUT_OF_RANGE


def test_fewer_than_two_points_is_insufficient():
    assert interpolate_size(_pts((1, 50)), 50) is Outcome.INSUFFICIENT_DATA
    assert interpolate_size([], 10) is Outcome.INSUFFICIENT_DATA


def test_non_positive_bracket_size_is_indeterminate():
    pts = [SievePoint(0.0, 5), SievePoint(10, 50)]
    assert interpolate_size(pts, 10) is Outcome.INDETERMINATE



def test_single_usable_point_gives_insufficient_everywhere():
    result = compute_case_result("A", [(4.75, 50), (0, 20), (2.0, None)])
    assert result.d10 is Outcome.INSUFFICIENT_DATA
    assert result.d30 is Outcome.INSUFFICIENT_DATA
    assert result.d60 is Outcome.INSUFFICIENT_DATA
    assert result.cu is Outcome.NOT_APPLICABLE
    assert result.cc is Outcome.NOT_APPLICABLE


def test_flat_run_on_exact_target_uses_last_at_or_below():
    # Two sizes both at 30%: ascending sort by (passing, size) puts 2.0
    # before 5.0; the last point <= target is the 5.0 one.
    pts = _pts((10, 60), (5, 30), (2, 30), (0.5, 5))
    assert interpolate_size(pts, 30) == 5.0


def test_tie_rule_brackets_with_last_below_and_first_above():
    pts = _pts((10, 80), (4, 20), (3, 20), (0.5, 5))
    # p1 = (4, 20) is the last with passing <= 50; p2 = (10, 80).
    expected = 10 ** (math.log10(4) + (1 - math.log10(4)) * (50 - 20) / (80 - 20))
    assert interpolate_size(pts, 50) == pytest.approx(expected, rel=1e-12)
    # Between 5 and 20 the bracket lower end is (0.5, 5), the upper (3, 20).
    expected_low = 10 ** (math.log10(0.5) + (math.log10(3) - math.log10(0.5)) * (10 - 5) / 15)
    assert interpolate_size(pts, 10) == pytest.approx(expected_low, rel=1e-12)


def test_input_order_does_not_matter():
    pts = _pts(*WELL_GRADED)
    shuffled = list(reversed(pts))
    for t in (10, 30, 60):
        assert interpolate_size(pts, t) == interpolate_size(shuffled, t)


def test_derived_coefficients():
    assert uniformity_coefficient(0.2, 2.0) == pytest.approx(10.0, rel=1e-9)
    assert curvature_coefficient(0.2, 0.5, 2.0) == pytest.approx(0.625, rel=1e-9)


def test_coefficients_not_applicable_on_sentinels():
    assert uniformity_coefficient(Outcome.OUT_OF_RANGE, 2.0) is Outcome.NOT_APPLICABLE
    assert uniformity_coefficient(0.0, 2.0) is Outcome.NOT_APPLICABLE
    assert curvature_coefficient(0.2, Outcome.INDETERMINATE, 2.0) is Outcome.NOT_APPLICABLE
    assert curvature_coefficient(0.2, 0.5, Outcome.OUT_OF_RANGE) is Outcome.NOT_APPLICABLE


def test_case_result_for_well_graded_sample():
    result = compute_case_result("Case 1", WELL_GRADED)
    assert result_is_complete(result)
    assert 0.075 < result.d10 < 0.425
    assert result.d10 <= result.d30 <= result.d60
    assert result.cu == pytest.approx(result.d60 / result.d10)
    assert result.cc == pytest.approx(result.d30 ** 2 / (result.d10 * result.d60))


def test_case_result_without_fines_leaves_d10_out_of_range():
    result = compute_case_result("Gravel", [(53, 100), (19, 70), (4.75, 35), (2.36, 25)])
    assert result.d10 is Outcome.OUT_OF_RANGE
    assert isinstance(result.d30, float)
    assert isinstance(result.d60, float)
    assert result.cu is Outcome.NOT_APPLICABLE
    assert result.cc is Outcome.NOT_APPLICABLE


def test_out_of_range_values_are_excluded_from_interpolation():
    with_bad = compute_case_result("A", [(10, 150), (1, 60), (0.1, 10)])
    without = compute_case_result("A", [(1, 60), (0.1, 10)])
    assert with_bad == without
    assert usable_points([(10, 150), (-1, 50), (1, 60)]) == [SievePoint(1.0, 60.0)]


@pytest.mark.parametrize(
    "data",
    [
        WELL_GRADED,
        [(37.5, 100), (9.5, 90), (2.0, 61), (0.85, 60), (0.25, 30), (0.15, 10), (0.075, 0)],
        [(4.75, 100), (2.0, 100), (0.425, 60), (0.15, 30), (0.075, 10)],
    ],
)
def test_d_values_are_ordered(data):
    r = compute_case_result("X", data)
    assert result_is_complete(r)
    assert r.d10 <= r.d30 <= r.d60


def test_outcome_tags():
    assert Outcome.NOT_APPLICABLE.tag == "N/A"
    assert str(Outcome.OUT_OF_RANGE) == "Out of Range"


def test_analyze_computes_every_case_when_clean():
    snap = _snap(
        [53, 19, 4.75, 0.425, 0.075],
        {"A": ["100", "80", "55", "25", "5"], "B": ["", "", "", "", ""]},
    )
    report = analyze(snap)
    assert report.calculable
    assert [r.case_name for r in report.results] == ["A", "B"]
    assert result_is_complete(report.result_for("A"))
    assert report.result_for("B").d10 is Outcome.INSUFFICIENT_DATA


def test_analyze_warnings_do_not_block():
    snap = _snap([53, 19, 4.75, 0.425], {"A": ["100", "80", "80", "85"]})
    report = analyze(snap)
    assert report.calculable
    assert len(report.messages) == 1
    assert len(report.results) == 1


def test_batch_gate_blocks_all_cases_on_any_error():
    snap = _snap([10, 1, 0.1], {"A": ["90", "50", "5"], "B": ["90", "150", "5"]})
    report = analyze(snap, gate=GATE_BATCH)
    assert not report.calculable
    assert report.results == ()


def test_case_gate_skips_only_cases_with_errors():
    snap = _snap([10, 1, 0.1], {"A": ["90", "50", "5"], "B": ["90", "150", "5"]})
    report = analyze(snap, gate=GATE_CASE)
    assert not report.calculable
    assert [r.case_name for r in report.results] == ["A"]
    assert report.result_for("B") is None


def test_unknown_gate_is_rejected():
    with pytest.raises(ValueError):
        analyze(default_snapshot(), gate="loose")


def test_analyze_is_idempotent():
    snap = default_snapshot()
    for row, value in enumerate(["100", "98", "95", "90", "80", "65", "40", "30", "15", "4"]):
        snap = with_value(snap, row, "Case 1", value)
    snap = with_value(snap, 3, "Case 2", "abc")
    first = analyze(snap, gate=GATE_CASE)
    second = analyze(snap, gate=GATE_CASE)
    assert first == second
    assert repr(first) == repr(second)
    assert first.snapshot_version == snap.version


def test_case_result_row_shape():
    r = CaseResult("A", 0.2, 0.5, 2.0, 10.0, 0.625)
    assert list(r.as_row()) == ["Case", "D10", "D30", "D60", "Cu", "Cc"]


def test_passing_of_exactly_0_and_100_bounds_the_span():
    result = compute_case_result("Edge", [(10, 100), (1, 0)])
    assert result.d10 == pytest.approx(10 ** 0.1, rel=1e-12)
    assert result.d30 == pytest.approx(10 ** 0.3, rel=1e-12)
    assert result.d60 == pytest.approx(10 ** 0.6, rel=1e-12)
    assert result.cu == pytest.approx(10 ** 0.5, rel=1e-12)
    assert result.cc == pytest.approx(10 ** -0.1, rel=1e-12)
