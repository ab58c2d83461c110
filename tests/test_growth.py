from __future__ import annotations

import numpy as np
import pytest

from _synthetic import make_pair
from data.growth import calculate_intermediate_size, grow_patch, transform_and_grow
from data.transforms import NoOp, Rotate, Scale


def test_intermediate_size_scenario() -> None:
    assert calculate_intermediate_size((50, 100), 4) == (480, 960)
    assert calculate_intermediate_size((10, 20), 2) == (48, 96)


def test_sparse_class_stops_at_base_size() -> None:
    _, mask = make_pair(height=48, width=96, blocks={'scar': (22, 26, 45, 51)})
    image = np.zeros((48, 96, 3), dtype=np.float32)
    result = grow_patch(image, mask, 'scar', (10, 20), 2, fg_threshold=50.0)
    assert result.size_multiplier == 1
    assert result.growth_iterations == 1
    assert result.final_output.shape == (10, 20, 5)
    assert not result.max_size_reached


def test_dense_class_grows_until_below_threshold() -> None:
    # Class fills the 10x20 center but only ~1/4 of the 20x40 crop
    _, mask = make_pair(height=48, width=96, blocks={'scar': (19, 29, 38, 58)})
    image = np.zeros((48, 96, 3), dtype=np.float32)
    result = grow_patch(image, mask, 'scar', (10, 20), 4, fg_threshold=50.0)
    assert result.size_multiplier == 2
    assert result.crop_sizes == [(10, 20), (20, 40)]
    assert result.actual_fg_percentage == pytest.approx(25.0)
    assert result.final_input.shape == (20, 40, 3)


def test_max_size_reached_keeps_sample() -> None:
    _, mask = make_pair(height=48, width=96, blocks={'scar': (0, 48, 0, 96)})
    image = np.zeros((48, 96, 3), dtype=np.float32)
    result = grow_patch(image, mask, 'scar', (10, 20), 2, fg_threshold=50.0)
    assert result.size_multiplier == 2
    assert result.max_size_reached
    assert result.final_output.shape == (20, 40, 5)


def test_crop_exceeding_intermediate_uses_previous_multiplier() -> None:
    _, mask = make_pair(height=25, width=50, blocks={'scar': (0, 25, 0, 50)})
    image = np.zeros((25, 50, 3), dtype=np.float32)
    result = grow_patch(image, mask, 'scar', (10, 20), 4, fg_threshold=50.0)
    # x3 would be 30x60 > 25x50
    assert result.size_multiplier == 2
    assert result.final_output.shape == (20, 40, 5)
    assert not result.max_size_reached
    # x1 and x2 extracted, x3 tried and rejected
    assert result.growth_iterations == 3
    assert result.crop_sizes == [(10, 20), (20, 40)]


def test_base_patch_too_large_raises() -> None:
    _, mask = make_pair(height=8, width=8, blocks={})
    with pytest.raises(ValueError):
        grow_patch(np.zeros((8, 8, 3), np.float32), mask, 'scar', (10, 20), 2, 50.0)


def test_background_threshold_never_grows() -> None:
    _, mask = make_pair(height=48, width=96, blocks={})
    image = np.zeros((48, 96, 3), dtype=np.float32)
    result = grow_patch(image, mask, 'background', (10, 20), 4, fg_threshold=100.0)
    assert result.size_multiplier == 1


@pytest.mark.parametrize('geometric', [NoOp(), Scale(1.1) | Rotate(37.0), Rotate(270.0)])
def test_bounds_and_dimensions(geometric) -> None:
    image, mask = make_pair(height=48, width=96, blocks={'hematoma': (10, 40, 20, 80)})
    result = transform_and_grow(image, mask, geometric, 'hematoma', (10, 20), 2, 50.0)
    assert 1 <= result.size_multiplier <= 2
    assert result.final_output.shape[:2] == (10 * result.size_multiplier, 20 * result.size_multiplier)
    assert result.final_input.shape[:2] == result.final_output.shape[:2]
