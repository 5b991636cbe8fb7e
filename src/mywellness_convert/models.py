from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal

Source = Literal["indoor", "outdoor"]
SourceShape = Literal["indoor", "outdoor", "single-detail"]
SOURCE_SHAPES: tuple[str, ...] = ("indoor", "outdoor", "single-detail")
ExportFormat = Literal["tcx", "fit"]
EXPORT_FORMATS: tuple[str, ...] = ("tcx", "fit")

# Canonical metric names shared by every source shape
AVG_HR = "AvgHr"
MAX_HR = "MaxHr"
AVG_POWER = "AvgPower"
AVG_SPM = "AvgSpm"
DURATION = "Duration"
H_DISTANCE = "HDistance"
FLOORS = "Floors"
MOVE = "Move"
CALORIES = "Calories"

Metrics = dict[str, float]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default wall-clock used when a workout carries no usable start time."""
    return datetime.now(tz=timezone.utc)


@dataclass
class SeriesPoint:
    t_sec: int  # non-negative offset from workout start
    hr: float | None = None
    watts: float | None = None
    cadence: float | None = None
    vertical_m: float | None = None


@dataclass
class WorkoutExportOpts:
    include_hr_series: bool = False
    include_cadence_series: bool = False
    include_power_series: bool = False
    include_metrics_in_notes: bool = False
    include_calories: bool = False
    include_distance: bool = False
    include_vertical_as_altitude: bool = False


@dataclass
class Workout:
    uid: str
    id: str
    source: Source
    activity_name: str
    started_at_iso: str | None = None
    duration_sec: float | None = None
    calories: float | None = None
    distance_m: float | None = None
    vertical_m: float | None = None
    cadence_spm: float | None = None
    metrics: Metrics = field(default_factory=dict)
    series: list[SeriesPoint] | None = None
    # source record, only consulted for start-time fallbacks
    raw: Any = None
    export_opts: WorkoutExportOpts = field(default_factory=WorkoutExportOpts)

    @property
    def metric_keys(self) -> list[str]:
        return sorted(self.metrics)

    @property
    def has_series(self) -> bool:
        return bool(self.series)

    def sorted_series(self) -> list[SeriesPoint]:
        """Series ordered by offset; stable, so equal offsets keep input order."""
        return sorted(self.series or [], key=lambda p: p.t_sec)
