import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from sievelab.services.snapshot import case_points
from sievelab.services.validators import Severity, is_calculable, validate_cases

logger = logging.getLogger(__name__)

TARGET_PERCENTS = (10, 30, 60)
GATE_BATCH = "batch"
GATE_CASE = "case"
GATES = (GATE_BATCH, GATE_CASE)


class Outcome(Enum):
    INSUFFICIENT_DATA = "Insufficient Data"
    OUT_OF_RANGE = "Out of Range"
    INDETERMINATE = "Indeterminate"
    NOT_APPLICABLE = "N/A"

    @property
    def tag(self):
        return self.value

    def __str__(self):
        return self.value


Value = Union[float, Outcome]


@dataclass(frozen=True)
class SievePoint:
    sieve_size: float
    passing: float


@dataclass(frozen=True)
class CaseResult:
    case_name: str
    d10: Value
    d30: Value
    d60: Value
    cu: Value
    cc: Value

    def as_row(self):
        return {
            "Case": self.case_name,
            "D10": self.d10,
            "D30": self.d30,
            "D60": self.d60,
            "Cu": self.cu,
            "Cc": self.cc,
        }


@dataclass(frozen=True)
class AnalysisReport:
    snapshot_version: int
    gate: str
    messages: tuple
    results: tuple
    calculable: bool

    def result_for(self, case_name) -> Optional[CaseResult]:
        for r in self.results:
            if r.case_name == case_name:
                return r
        return None


def is_numeric(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def usable_points(pairs):
    """
    Keeps points that can feed interpolation: a positive sieve size and a
    finite passing value inside [0, 100]. Accepts SievePoint or (size, passing).
    """
    out = []
    for item in pairs:
        if isinstance(item, SievePoint):
            size, passing = item.sieve_size, item.passing
        else:
            size, passing = item
        if size is None or passing is None:
            continue
        if not (math.isfinite(size) and math.isfinite(passing)):
            continue
        if size <= 0 or passing < 0 or passing > 100:
            continue
        out.append(SievePoint(float(size), float(passing)))
    return out


def interpolate_size(points, target) -> Value:
    """
    Sieve opening at which `target` percent passes, interpolated linearly in
    log10(size) against passing percent. No extrapolation outside the
    measured passing span.
    """
    if len(points) < 2:
        return Outcome.INSUFFICIENT_DATA

    ordered = sorted(points, key=lambda p: (p.passing, p.sieve_size))
    if target < ordered[0].passing or target > ordered[-1].passing:
        return Outcome.OUT_OF_RANGE

    p1 = None
    p2 = None
    for point in ordered:
        if point.passing <= target:
            p1 = point
        if point.passing >= target and p2 is None:
            p2 = point

    if p1 is not None and p1.passing == target:
        return p1.sieve_size
    if p2 is not None and p2.passing == target:
        return p2.sieve_size

    if p1 is None or p2 is None or p1 is p2:
        return Outcome.INDETERMINATE
    if p1.sieve_size <= 0 or p2.sieve_size <= 0:
        return Outcome.INDETERMINATE

    # Flat run: any size along it is as good as another.
    if p2.passing == p1.passing:
        return p1.sieve_size

    l1 = math.log10(p1.sieve_size)
    l2 = math.log10(p2.sieve_size)
    lx = l1 + (l2 - l1) * (target - p1.passing) / (p2.passing - p1.passing)
    return 10 ** lx


def uniformity_coefficient(d10, d60) -> Value:
    if is_numeric(d10) and is_numeric(d60) and d10 > 0:
        return d60 / d10
    return Outcome.NOT_APPLICABLE


def curvature_coefficient(d10, d30, d60) -> Value:
    if not (is_numeric(d10) and is_numeric(d30) and is_numeric(d60)):
        return Outcome.NOT_APPLICABLE
    if d10 <= 0 or d60 <= 0:
        return Outcome.NOT_APPLICABLE
    return (d30 * d30) / (d10 * d60)


def compute_case_result(case_name, points) -> CaseResult:
    pts = usable_points(points)
    if len(pts) < 2:
        return CaseResult(
            case_name,
            Outcome.INSUFFICIENT_DATA,
            Outcome.INSUFFICIENT_DATA,
            Outcome.INSUFFICIENT_DATA,
            Outcome.NOT_APPLICABLE,
            Outcome.NOT_APPLICABLE,
        )

    d10, d30, d60 = (interpolate_size(pts, t) for t in TARGET_PERCENTS)
    return CaseResult(
        case_name,
        d10,
        d30,
        d60,
        uniformity_coefficient(d10, d60),
        curvature_coefficient(d10, d30, d60),
    )


def result_is_complete(result) -> bool:
    return all(is_numeric(v) for v in (result.d10, result.d30, result.d60))


def analyze(snapshot, gate=GATE_BATCH) -> AnalysisReport:
    """
    Validate a grid snapshot and compute one CaseResult per case.

    gate="batch": any Error anywhere suppresses every result.
    gate="case": cases carrying an Error are left out, the rest are computed.
    """
    if gate not in GATES:
        raise ValueError(f"Unknown validation gate: {gate!r}")

    messages = tuple(validate_cases(snapshot))
    calculable = is_calculable(messages)

    results = []
    if calculable or gate == GATE_CASE:
        blocked = {m.case_name for m in messages if m.severity is Severity.ERROR}
        for case_name in snapshot.cases:
            if case_name in blocked:
                continue
            results.append(compute_case_result(case_name, case_points(snapshot, case_name)))

    logger.info(
        "Analysis v%s (%s gate): %d case(s) computed, %d message(s), calculable=%s",
        snapshot.version,
        gate,
        len(results),
        len(messages),
        calculable,
    )
    return AnalysisReport(
        snapshot_version=snapshot.version,
        gate=gate,
        messages=messages,
        results=tuple(results),
        calculable=calculable,
    )
