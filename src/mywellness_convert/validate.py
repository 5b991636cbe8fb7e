from __future__ import annotations

import io
from collections import Counter
from dataclasses import dataclass

from fitparse import FitFile, FitParseError

from mywellness_convert.errors import FitValidationError

REQUIRED_MESSAGES = ("activity", "session", "lap", "record")


@dataclass(frozen=True)
class FitSummary:
    activities: int
    sessions: int
    laps: int
    records: int
    records_with_hr: int

    def __str__(self) -> str:
        return (
            f"activities={self.activities}, sessions={self.sessions}, "
            f"laps={self.laps}, records={self.records} (hr on {self.records_with_hr})"
        )


def validate_fit(data: bytes) -> FitSummary:
    """
    Read a FIT file back and check what downstream importers rely on:
      - at least one activity, session, lap and record message
      - record timestamps never go backwards
      - record distances never go backwards
    Raises FitValidationError on the first problem found.
    """
    try:
        ff = FitFile(io.BytesIO(data))
        messages = list(ff.get_messages())
    except FitParseError as e:
        raise FitValidationError(f"Unreadable FIT file: {e}") from e

    counts = Counter(m.name for m in messages)
    for name in REQUIRED_MESSAGES:
        if counts[name] < 1:
            raise FitValidationError(f"Missing {name} message")

    prev_ts = None
    prev_dist = None
    with_hr = 0
    for m in messages:
        if m.name != "record":
            continue
        ts = m.get_value("timestamp")
        dist = m.get_value("distance")
        if ts is not None:
            if prev_ts is not None and ts < prev_ts:
                raise FitValidationError("Non-monotonic record timestamps")
            prev_ts = ts
        if dist is not None:
            if prev_dist is not None and dist < prev_dist:
                raise FitValidationError("Non-monotonic record distance")
            prev_dist = dist
        if m.get_value("heart_rate") is not None:
            with_hr += 1

    return FitSummary(
        activities=counts["activity"],
        sessions=counts["session"],
        laps=counts["lap"],
        records=counts["record"],
        records_with_hr=with_hr,
    )
