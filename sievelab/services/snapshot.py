import math
from dataclasses import dataclass, replace

from sievelab.services.validators import (
    is_valid_case_name,
    next_case_name,
    parse_sieve_size,
    try_parse_passing,
)

DEFAULT_SIEVE_SIZES = (53, 37.5, 31.5, 26.5, 19, 13.2, 4.75, 2.36, 0.425, 0.075)
DEFAULT_CASE_COUNT = 12


@dataclass(frozen=True)
class GridSnapshot:
    """
    Immutable copy of the input grid taken at calculation time.

    values[row][col] is the raw text typed for sieve_sizes[row] and
    cases[col]. Every edit returns a new snapshot with version + 1.
    """

    sieve_sizes: tuple
    cases: tuple
    values: tuple
    version: int = 0

    def __post_init__(self):
        if len(self.values) != len(self.sieve_sizes):
            raise ValueError("values must have one row per sieve size")
        for row in self.values:
            if len(row) != len(self.cases):
                raise ValueError("each row must have one value per case")
        if len(set(self.cases)) != len(self.cases):
            raise ValueError("case names must be unique")

    def case_index(self, case_name) -> int:
        try:
            return self.cases.index(case_name)
        except ValueError:
            raise KeyError(case_name) from None

    def value(self, row, case_name) -> str:
        return self.values[row][self.case_index(case_name)]


def default_snapshot(sieve_sizes=DEFAULT_SIEVE_SIZES, case_count=DEFAULT_CASE_COUNT) -> GridSnapshot:
    cases = tuple(f"Case {i + 1}" for i in range(case_count))
    sizes = tuple(float(s) for s in sieve_sizes)
    values = tuple(tuple("" for _ in cases) for _ in sizes)
    return GridSnapshot(sizes, cases, values, 0)


def _bump(snapshot, **changes):
    return replace(snapshot, version=snapshot.version + 1, **changes)


def with_value(snapshot, row, case_name, raw) -> GridSnapshot:
    col = snapshot.case_index(case_name)
    rows = [list(r) for r in snapshot.values]
    rows[row][col] = "" if raw is None else str(raw)
    return _bump(snapshot, values=tuple(tuple(r) for r in rows))


def with_sieve_size(snapshot, row, raw) -> GridSnapshot:
    """Set a row's opening; rows are then re-sorted ascending and keep their values."""
    sizes = list(snapshot.sieve_sizes)
    sizes[row] = parse_sieve_size(raw)
    paired = sorted(zip(sizes, snapshot.values), key=lambda p: p[0])
    return _bump(
        snapshot,
        sieve_sizes=tuple(p[0] for p in paired),
        values=tuple(p[1] for p in paired),
    )


def with_sieve_sizes(snapshot, raws) -> GridSnapshot:
    """Set every row's opening in one edit; unchanged input returns `snapshot` itself."""
    if len(raws) != len(snapshot.sieve_sizes):
        raise ValueError("One sieve size is needed per row")
    sizes = [parse_sieve_size(raw) for raw in raws]
    if tuple(sizes) == snapshot.sieve_sizes:
        return snapshot
    paired = sorted(zip(sizes, snapshot.values), key=lambda p: p[0])
    return _bump(
        snapshot,
        sieve_sizes=tuple(p[0] for p in paired),
        values=tuple(p[1] for p in paired),
    )


def with_added_row(snapshot, size=0.0) -> GridSnapshot:
    blank = tuple("" for _ in snapshot.cases)
    return _bump(
        snapshot,
        sieve_sizes=snapshot.sieve_sizes + (float(size),),
        values=snapshot.values + (blank,),
    )


def with_removed_row(snapshot, row) -> GridSnapshot:
    if len(snapshot.sieve_sizes) <= 1:
        return snapshot
    return _bump(
        snapshot,
        sieve_sizes=snapshot.sieve_sizes[:row] + snapshot.sieve_sizes[row + 1:],
        values=snapshot.values[:row] + snapshot.values[row + 1:],
    )


def with_added_case(snapshot, case_name=None) -> GridSnapshot:
    name = case_name if is_valid_case_name(case_name or "") else next_case_name(snapshot.cases)
    name = name.strip()
    if name in snapshot.cases:
        raise ValueError(f"Case already exists: {name}")
    return _bump(
        snapshot,
        cases=snapshot.cases + (name,),
        values=tuple(r + ("",) for r in snapshot.values),
    )


def with_removed_case(snapshot) -> GridSnapshot:
    # The last column goes; the grid always keeps at least one case.
    if len(snapshot.cases) <= 1:
        return snapshot
    return _bump(
        snapshot,
        cases=snapshot.cases[:-1],
        values=tuple(r[:-1] for r in snapshot.values),
    )


def case_points(snapshot, case_name):
    """(size, passing) for every row of the case holding a readable number."""
    col = snapshot.case_index(case_name)
    out = []
    for size, row in zip(snapshot.sieve_sizes, snapshot.values):
        passing = try_parse_passing(row[col])
        if passing is None:
            continue
        out.append((size, passing))
    return out


def plottable_cases(snapshot):
    out = []
    for case_name in snapshot.cases:
        pts = [p for p in case_points(snapshot, case_name) if p[0] > 0]
        if len(pts) >= 2:
            out.append(case_name)
    return out


def chart_series(snapshot):
    """
    Plot rows, smallest opening first. Case values are clamped to [0, 100]
    for drawing only; blank or unreadable cells are None.
    """
    series = []
    for size, row in zip(snapshot.sieve_sizes, snapshot.values):
        if size <= 0:
            continue
        item = {"sieve_size": size, "log_size": math.log10(size)}
        for col, case_name in enumerate(snapshot.cases):
            v = try_parse_passing(row[col])
            item[case_name] = None if v is None else max(0.0, min(100.0, v))
        series.append(item)
    series.sort(key=lambda r: r["sieve_size"])
    return series


def to_dict(snapshot):
    return {
        "version": snapshot.version,
        "sieve_sizes": list(snapshot.sieve_sizes),
        "cases": list(snapshot.cases),
        "values": [list(r) for r in snapshot.values],
    }


def from_dict(data) -> GridSnapshot:
    if not isinstance(data, dict):
        raise ValueError("Snapshot data must be an object")
    cases = tuple(str(c) for c in data.get("cases") or [])
    if not cases or not all(is_valid_case_name(c) for c in cases):
        raise ValueError("Snapshot needs at least one named case")
    sizes = tuple(parse_sieve_size(s) for s in data.get("sieve_sizes") or [])
    values = tuple(
        tuple("" if v is None else str(v) for v in row)
        for row in data.get("values") or []
    )
    return GridSnapshot(sizes, cases, values, int(data.get("version") or 0))
