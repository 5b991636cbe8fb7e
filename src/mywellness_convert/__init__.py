from .exporters import workout_to_tcx
from .fit_export import build_fit_messages, workout_to_fit
from .models import SeriesPoint, Workout, WorkoutExportOpts
from .normalize import normalize
from .options import resolve_export_opts
