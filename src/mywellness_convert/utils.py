from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

# unit -> meters multiplier; anything else passes through unconverted
_METERS_PER_UNIT = {
    "m": 1.0,
    "meter": 1.0,
    "meters": 1.0,
    "metre": 1.0,
    "metres": 1.0,
    "km": 1000.0,
    "kilometer": 1000.0,
    "kilometers": 1000.0,
    "mi": 1609.344,
    "mile": 1609.344,
    "miles": 1609.344,
    "mls": 1609.344,
    "ft": 0.3048,
    "foot": 0.3048,
    "feet": 0.3048,
}


def coerce_float(v: Any) -> float | None:
    """
    Best-effort numeric parse. Numbers and numeric strings pass through,
    everything else (bools, NaN/inf, junk) becomes None instead of raising.
    """
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, (int, float)):
        x = float(v)
    elif isinstance(v, str):
        try:
            x = float(v.strip())
        except ValueError:
            return None
    else:
        return None
    return x if math.isfinite(x) else None


def as_record(v: Any) -> dict | None:
    return v if isinstance(v, dict) else None


def as_list(v: Any) -> list:
    return v if isinstance(v, list) else []


def round_half_up(x: float) -> int:
    # 120.5 -> 121 and -0.5 -> 0, unlike round()'s banker's rounding
    return int(math.floor(x + 0.5))


def average(values: list[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def to_meters(value: float, unit: Any) -> float:
    u = unit.strip().lower() if isinstance(unit, str) else ""
    return value * _METERS_PER_UNIT.get(u, 1.0)


def parse_duration_string(s: str) -> float | None:
    """'MM:SS' or 'HH:MM:SS' -> seconds."""
    parts = s.strip().split(":")
    nums = [coerce_float(p) for p in parts]
    if any(n is None for n in nums):
        return None
    if len(nums) == 2:
        m, sec = nums
        return m * 60 + sec
    if len(nums) == 3:
        h, m, sec = nums
        return h * 3600 + m * 60 + sec
    return None


def format_duration(sec: float | None) -> str:
    if not sec or sec <= 0:
        return "-"
    h = int(sec // 3600)
    m = int((sec % 3600) // 60)
    s = int(sec % 60)
    if h > 0:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def parse_iso(s: Any) -> datetime | None:
    """
    Parse an ISO-8601 date or date-time. A trailing 'Z' is accepted and
    timestamps without an offset are taken as UTC.
    """
    if not isinstance(s, str) or not s.strip():
        return None
    text = s.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso_z(dt: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. 2024-03-01T08:15:00.000Z."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def text_id(v: Any) -> str:
    # 42.0 -> "42" so numeric ids read the same whether the source used ints or floats
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)
