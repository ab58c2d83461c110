from .metrics import (
    class_percentage, class_percentages, foreground_percentage,
    ParameterTracker, print_parameter_summary
)

__all__ = [
    'class_percentage',
    'class_percentages',
    'foreground_percentage',
    'ParameterTracker',
    'print_parameter_summary',
]
