from __future__ import annotations

import numpy as np
import pytest
import torch

from _synthetic import make_pair
from utils.metrics import (
    ParameterTracker,
    class_percentage,
    class_percentages,
    foreground_percentage,
    print_parameter_summary,
)


def test_class_percentages() -> None:
    _, mask = make_pair(height=10, width=10, blocks={'scar': (0, 5, 0, 10), 'necrosis': (5, 6, 0, 10)})
    pcts = class_percentages(mask)
    assert pcts['scar'] == pytest.approx(50.0)
    assert pcts['necrosis'] == pytest.approx(10.0)
    assert pcts['background'] == pytest.approx(40.0)
    assert foreground_percentage(mask) == pytest.approx(60.0)


def test_accepts_torch_tensor() -> None:
    _, mask = make_pair(height=10, width=10, blocks={'redness': (0, 10, 0, 3)})
    assert class_percentage(torch.from_numpy(mask), 1) == pytest.approx(30.0)


def test_empty_mask_raises() -> None:
    with pytest.raises(ValueError):
        class_percentage(np.zeros((0, 5, 5), dtype=np.float32), 0)


def test_parameter_tracker(capsys: pytest.CaptureFixture[str]) -> None:
    records = [
        {'scale_factor': 0.9, 'rotation_angle': 10.0, 'flip_type': 'flipx',
         'blur_kernel_size': 3, 'target_class': 'scar'},
        {'scale_factor': 1.1, 'rotation_angle': 30.0, 'flip_type': 'noop',
         'blur_kernel_size': 3, 'target_class': 'background'},
    ]
    tracker = ParameterTracker().update_all(records)
    assert len(tracker) == 2

    stats = tracker.get_statistics()
    assert stats['scale_factor']['mean'] == pytest.approx(1.0)
    assert stats['rotation_angle']['min'] == pytest.approx(10.0)
    assert stats['shear_x_angle'] == {'mean': 0.0, 'std': 0.0, 'min': 0.0, 'max': 0.0}

    summary = tracker.summary()
    assert summary['categorical']['blur_kernel_size'] == {'3': 2}
    assert summary['categorical']['flip_type'] == {'flipx': 1, 'noop': 1}

    print_parameter_summary(tracker)
    assert 'AUGMENTATION PARAMETERS' in capsys.readouterr().out

    tracker.reset()
    assert len(tracker) == 0
