"""
Iterative patch growth.

The geometric pipeline runs once on the smart-cropped intermediate. Patches of
base_size x 1, x 2, ... are then center-cropped from that same transformed
intermediate until the target class is no longer over-represented, i.e. its
percentage drops to the class's foreground threshold or below. A lesion that
fills a small patch becomes proportionally smaller as the window widens.
"""
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

from utils.metrics import class_percentage

from .source_catalog import get_class_index
from .transforms import CropSize


DEFAULT_ROTATION_FACTOR = 2
DEFAULT_MARGIN = 1.2


def calculate_intermediate_size(
    base_size: Tuple[int, int],
    max_multiplier: int,
    rotation_factor: int = DEFAULT_ROTATION_FACTOR,
    margin: float = DEFAULT_MARGIN,
) -> Tuple[int, int]:
    """
    Intermediate size that still holds the largest final patch after any rotation.

    Example:
        base (50, 100), max_multiplier 4 -> (480, 960)
    """
    max_final_h = base_size[0] * max_multiplier
    max_final_w = base_size[1] * max_multiplier
    return (
        int(round(max_final_h * rotation_factor * margin)),
        int(round(max_final_w * rotation_factor * margin)),
    )


@dataclass
class GrowthResult:
    final_input: np.ndarray
    final_output: np.ndarray
    size_multiplier: int
    actual_fg_percentage: float
    growth_iterations: int
    max_size_reached: bool
    intermediate_height: int
    intermediate_width: int
    crop_sizes: List[Tuple[int, int]] = field(default_factory=list)


def grow_patch(
    transformed_input: np.ndarray,
    transformed_output: np.ndarray,
    target_class: str,
    base_size: Tuple[int, int],
    max_multiplier: int,
    fg_threshold: float,
) -> GrowthResult:
    """
    Grow the final patch over an already transformed intermediate.

    Args:
        transformed_input: Geometric-transformed intermediate image
        transformed_output: Geometric-transformed intermediate mask
        target_class: Class whose density controls growth
        base_size: (height, width) at multiplier 1
        max_multiplier: Largest multiplier tried
        fg_threshold: Stop once the class percentage is <= this value

    Returns:
        GrowthResult carrying the last extracted crop.

    Raises:
        ValueError: If not even the base patch fits in the intermediate.
    """
    class_idx = get_class_index(target_class)
    intermediate_h, intermediate_w = transformed_output.shape[:2]

    multiplier = 1
    iterations = 0
    actual_pct = 100.0
    final_input = None
    final_output = None
    crop_sizes = []

    while multiplier <= max_multiplier:
        # Counts every size tried, including one that does not fit
        iterations += 1
        current_h = base_size[0] * multiplier
        current_w = base_size[1] * multiplier

        if current_h > intermediate_h or current_w > intermediate_w:
            # Keep the previous crop
            multiplier = max(1, multiplier - 1)
            break

        crop_sizes.append((current_h, current_w))
        final_input, final_output = CropSize(current_h, current_w)(
            transformed_input, transformed_output
        )
        actual_pct = class_percentage(final_output, class_idx)

        if actual_pct <= fg_threshold:
            break
        if multiplier >= max_multiplier:
            break
        multiplier += 1

    if final_input is None:
        raise ValueError(
            f"Intermediate ({intermediate_h}, {intermediate_w}) smaller than "
            f"base patch {tuple(base_size)}"
        )

    max_size_reached = multiplier >= max_multiplier and actual_pct > fg_threshold

    return GrowthResult(
        final_input=final_input,
        final_output=final_output,
        size_multiplier=multiplier,
        actual_fg_percentage=actual_pct,
        growth_iterations=iterations,
        max_size_reached=max_size_reached,
        intermediate_height=intermediate_h,
        intermediate_width=intermediate_w,
        crop_sizes=crop_sizes,
    )


def transform_and_grow(
    cropped_input, cropped_output, geometric, target_class,
    base_size, max_multiplier, fg_threshold,
) -> GrowthResult:
    """Run the geometric pipeline once, then grow over its result."""
    transformed_input, transformed_output = geometric(cropped_input, cropped_output)
    return grow_patch(
        transformed_input, transformed_output, target_class,
        base_size, max_multiplier, fg_threshold,
    )
