import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

CASE_NAME_RE = re.compile(r"^Case (\d+)$")

RANGE_REASON = "Enter a value between 0 and 100"
MONOTONIC_REASON = "Non-monotonic: passing increases as sieve size decreases"


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationMessage:
    sieve_size: float
    case_name: str
    severity: Severity
    reason: str
    row_index: int = -1


def is_blank(raw) -> bool:
    return raw is None or not str(raw).strip()


def parse_passing(raw) -> Optional[float]:
    """
    Blank -> None. Finite number -> float. Anything else raises ValueError.
    """
    if is_blank(raw):
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = float(raw)
    else:
        value = float(str(raw).strip())
    if not math.isfinite(value):
        raise ValueError(f"Not a finite number: {raw!r}")
    return value


def try_parse_passing(raw) -> Optional[float]:
    try:
        return parse_passing(raw)
    except ValueError:
        return None


def parse_sieve_size(raw) -> float:
    # Unset or unreadable sizes become 0, which marks the row as unused.
    value = try_parse_passing(raw)
    return 0.0 if value is None else value


def is_valid_case_name(value: str) -> bool:
    return bool(value and value.strip())


def next_case_name(existing) -> str:
    highest = 0
    for name in existing:
        m = CASE_NAME_RE.match(name)
        if m:
            highest = max(highest, int(m.group(1)))
    return f"Case {max(highest, len(existing)) + 1}"


def validate_cases(snapshot):
    """
    Scan each case from the largest opening to the smallest.

    Out-of-range or unreadable values are Errors and do not move the
    running reference. A value above the last valid one is a Warning and
    does become the new reference.
    """
    rows = [
        (idx, size)
        for idx, size in enumerate(snapshot.sieve_sizes)
        if size is not None and size > 0
    ]
    rows.sort(key=lambda r: r[1], reverse=True)

    messages = []
    for col, case_name in enumerate(snapshot.cases):
        last_valid = None
        for row_idx, size in rows:
            raw = snapshot.values[row_idx][col]
            if is_blank(raw):
                continue
            try:
                value = parse_passing(raw)
            except ValueError:
                value = None
            if value is None or value < 0 or value > 100:
                messages.append(ValidationMessage(size, case_name, Severity.ERROR, RANGE_REASON, row_idx))
                continue
            if last_valid is not None and value > last_valid:
                messages.append(ValidationMessage(size, case_name, Severity.WARNING, MONOTONIC_REASON, row_idx))
            last_valid = value

    for m in messages:
        logger.debug("%s %s @ %s mm: %s", m.severity.value, m.case_name, m.sieve_size, m.reason)
    errors = sum(1 for m in messages if m.severity is Severity.ERROR)
    if messages:
        logger.info("Validation: %d error(s), %d warning(s)", errors, len(messages) - errors)
    return messages


def has_errors(messages) -> bool:
    return any(m.severity is Severity.ERROR for m in messages)


def is_calculable(messages) -> bool:
    return not has_errors(messages)


def message_for_cell(messages, row_index, case_name) -> Optional[ValidationMessage]:
    for m in messages:
        if m.row_index == row_index and m.case_name == case_name:
            return m
    return None
