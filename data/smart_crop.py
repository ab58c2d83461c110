"""
Class-aware cropping.

Picks the crop window that contains the most of the target class, using a
greedy best-of-N search over windows centered on class pixels. The result only
seeds the pipeline: the growth step re-checks class density afterwards.
"""
from typing import Tuple

import numpy as np

from .source_catalog import SourceImage, get_class_index


DEFAULT_NUM_CANDIDATES = 20
DEFAULT_PRESENCE_THRESHOLD = 0.5


def find_class_pixels(output, class_idx, threshold=DEFAULT_PRESENCE_THRESHOLD):
    """(row, col) coordinates where the class channel exceeds `threshold`."""
    return np.argwhere(output[:, :, class_idx] > threshold)


def _random_window(rng, img_h, img_w, crop_h, crop_w):
    x_start = int(rng.integers(0, max(1, img_w - crop_w + 1)))
    y_start = int(rng.integers(0, max(1, img_h - crop_h + 1)))
    return (x_start, y_start, crop_w, crop_h)


def smart_crop_for_class(
    output: np.ndarray,
    target_class: str,
    crop_size: Tuple[int, int],
    rng=None,
    num_candidates: int = DEFAULT_NUM_CANDIDATES,
    threshold: float = DEFAULT_PRESENCE_THRESHOLD,
):
    """
    Find the crop window that maximizes target class presence.

    Args:
        output: Class-probability mask (H, W, C)
        target_class: Class to focus on
        crop_size: (height, width) of the window
        rng: numpy Generator
        num_candidates: Maximum number of anchor pixels tried
        threshold: Probability above which a pixel counts as the class

    Returns:
        (x_start, y_start, width, height), 0-based and inside the image.
    """
    if rng is None:
        rng = np.random.default_rng()

    img_h, img_w = output.shape[:2]
    crop_h, crop_w = crop_size
    class_idx = get_class_index(target_class)

    # Background needs no steering
    if target_class == 'background':
        return _random_window(rng, img_h, img_w, crop_h, crop_w)

    class_coords = find_class_pixels(output, class_idx, threshold)
    if len(class_coords) == 0:
        return _random_window(rng, img_h, img_w, crop_h, crop_w)

    n = min(num_candidates, len(class_coords))
    sampled = class_coords[rng.integers(0, len(class_coords), size=n)]

    channel = output[:, :, class_idx]
    best_score = -1.0
    best_window = (0, 0, crop_w, crop_h)

    for cy, cx in sampled:
        x_start = max(0, min(int(cx) - crop_w // 2, img_w - crop_w))
        y_start = max(0, min(int(cy) - crop_h // 2, img_h - crop_h))

        window = channel[y_start:y_start + crop_h, x_start:x_start + crop_w]
        class_pct = float(window.sum(dtype=np.float64)) / (crop_h * crop_w) * 100.0

        if class_pct > best_score:
            best_score = class_pct
            best_window = (x_start, y_start, crop_w, crop_h)

    return best_window


def apply_smart_crop(
    source: SourceImage,
    target_class: str,
    intermediate_size: Tuple[int, int],
    rng=None,
    num_candidates: int = DEFAULT_NUM_CANDIDATES,
    threshold: float = DEFAULT_PRESENCE_THRESHOLD,
):
    """
    Crop a source pair to the intermediate size around the target class.

    A source smaller than the intermediate size in either dimension is
    returned whole, with window (0, 0, W, H).

    Returns:
        (cropped_input, cropped_output, crop_window)
    """
    crop_h, crop_w = intermediate_size

    if source.height < crop_h or source.width < crop_w:
        return source.input, source.output, (0, 0, source.width, source.height)

    crop_window = smart_crop_for_class(
        source.output, target_class, intermediate_size,
        rng=rng, num_candidates=num_candidates, threshold=threshold,
    )
    x, y, w, h = crop_window

    cropped_input = source.input[y:y + h, x:x + w]
    cropped_output = source.output[y:y + h, x:x + w]
    return cropped_input, cropped_output, crop_window
