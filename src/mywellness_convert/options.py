from __future__ import annotations

from mywellness_convert.models import (
    AVG_HR,
    AVG_POWER,
    AVG_SPM,
    MAX_HR,
    Workout,
    WorkoutExportOpts,
)

CADENCE_KEY = "Cadence"


def resolve_export_opts(w: Workout) -> WorkoutExportOpts:
    """
    Default inclusion flags: each channel is on exactly when its data exists.
    The result only seeds user toggles; encoders read `w.export_opts` as-is.
    """
    m = w.metrics
    return WorkoutExportOpts(
        include_hr_series=AVG_HR in m or MAX_HR in m,
        include_cadence_series=(
            w.cadence_spm is not None or AVG_SPM in m or CADENCE_KEY in m
        ),
        include_power_series=AVG_POWER in m,
        include_metrics_in_notes=False,
        include_calories=w.calories is not None,
        include_distance=w.distance_m is not None,
        include_vertical_as_altitude=w.vertical_m is not None,
    )
