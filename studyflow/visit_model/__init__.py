"""
Visit model: label normalization, milestone inference, visit windows and
treatment cycles.
"""

from .visit_normalizer import (
    EOT_SENTINEL_DAY,
    FOLLOW_UP_SENTINEL_DAY,
    normalize_visit_name,
    normalize_visits,
    determine_visit_type,
    calculate_visit_window,
    sort_visits_by_day,
    visits_from_labels,
)
from .visit_inference import (
    infer_missing_visits,
    resolve_milestone_days,
    add_unscheduled_visit,
    validate_visit_sequence,
    find_last_treatment_day,
)
from .window_engine import (
    calculate_optimal_window,
    window_for_visit,
    apply_windows_to_visits,
    validate_windows,
    get_window_summary,
)
from .cycle_builder import (
    build_cycles,
    infer_cycle_length,
    assign_visits_to_cycles,
    validate_cycles,
    get_cycle_summary,
)

__all__ = [
    'EOT_SENTINEL_DAY',
    'FOLLOW_UP_SENTINEL_DAY',
    'normalize_visit_name',
    'normalize_visits',
    'determine_visit_type',
    'calculate_visit_window',
    'sort_visits_by_day',
    'visits_from_labels',
    'infer_missing_visits',
    'resolve_milestone_days',
    'add_unscheduled_visit',
    'validate_visit_sequence',
    'find_last_treatment_day',
    'calculate_optimal_window',
    'window_for_visit',
    'apply_windows_to_visits',
    'validate_windows',
    'get_window_summary',
    'build_cycles',
    'infer_cycle_length',
    'assign_visits_to_cycles',
    'validate_cycles',
    'get_cycle_summary',
]
