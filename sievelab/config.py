import json
import logging
import math

from sievelab.db import get_app_setting, set_app_setting
from sievelab.services.gradation import GATES
from sievelab.services.snapshot import DEFAULT_CASE_COUNT, DEFAULT_SIEVE_SIZES

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "size_decimals": 3,
    "ratio_decimals": 2,
    "show_cc": True,
    "validation_gate": "batch",
    "case_count": DEFAULT_CASE_COUNT,
    "sieve_sizes": list(DEFAULT_SIEVE_SIZES),
}


def _parse_int(raw, lo, hi):
    value = int(str(raw).strip())
    if value < lo or value > hi:
        raise ValueError(f"{value} outside {lo}..{hi}")
    return value


def _parse_bool(raw):
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {raw!r}")


def _parse_gate(raw):
    gate = str(raw).strip().lower()
    if gate not in GATES:
        raise ValueError(f"Unknown validation gate: {raw!r}")
    return gate


def _parse_sizes(raw):
    sizes = json.loads(raw) if isinstance(raw, str) else list(raw)
    out = [float(s) for s in sizes]
    if not out or any(not math.isfinite(s) or s <= 0 for s in out):
        raise ValueError("Sieve sizes must be positive finite numbers")
    return out


PARSERS = {
    "size_decimals": lambda v: _parse_int(v, 0, 8),
    "ratio_decimals": lambda v: _parse_int(v, 0, 8),
    "show_cc": _parse_bool,
    "validation_gate": _parse_gate,
    "case_count": lambda v: _parse_int(v, 1, 200),
    "sieve_sizes": _parse_sizes,
}


def _serialize(key, value):
    if key == "sieve_sizes":
        return json.dumps(value)
    if key == "show_cc":
        return "1" if value else "0"
    return str(value)


def load_settings():
    """Stored values merged over DEFAULT_SETTINGS; bad stored values fall back."""
    out = dict(DEFAULT_SETTINGS)
    out["sieve_sizes"] = list(DEFAULT_SETTINGS["sieve_sizes"])
    for key, parse in PARSERS.items():
        raw = get_app_setting(key)
        if raw is None or raw == "":
            continue
        try:
            out[key] = parse(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring stored setting %s=%r: %s", key, raw, exc)
    return out


def save_settings(values):
    parsed = {}
    for key, raw in (values or {}).items():
        if key not in PARSERS:
            raise KeyError(f"Unknown setting: {key}")
        parsed[key] = PARSERS[key](raw)
    for key, value in parsed.items():
        set_app_setting(key, _serialize(key, value))
    logger.info("Saved settings: %s", ", ".join(sorted(parsed)) or "-")
    return parsed
