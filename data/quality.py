"""
Quality gate applied to fully processed samples.
"""
from utils.metrics import class_percentage

from .source_catalog import SourceClassInfo, get_class_index


DEFAULT_MIN_PERCENTAGE = 0.5
DEFAULT_SOURCE_RATIO = 0.3


def quality_threshold(
    source_percentage: float,
    min_percentage: float = DEFAULT_MIN_PERCENTAGE,
    source_ratio: float = DEFAULT_SOURCE_RATIO,
) -> float:
    """Adaptive floor: rare classes in rare sources get a lower bar."""
    return max(min_percentage, source_percentage * source_ratio)


def meets_quality_threshold(
    final_output,
    target_class: str,
    source_info: SourceClassInfo,
    min_percentage: float = DEFAULT_MIN_PERCENTAGE,
    source_ratio: float = DEFAULT_SOURCE_RATIO,
) -> bool:
    """
    Check whether an augmented mask keeps enough of its target class.

    Background samples are always accepted. For lesion classes the class
    percentage of the final mask must reach
    max(min_percentage, source percentage * source_ratio).
    """
    if target_class == 'background':
        return True

    actual_pct = class_percentage(final_output, get_class_index(target_class))
    threshold = quality_threshold(
        source_info.percentage(target_class), min_percentage, source_ratio
    )
    return actual_pct >= threshold
