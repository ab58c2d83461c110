from __future__ import annotations

import numpy as np
import pytest

from data.balanced_generator import DEFAULT_TARGET_DISTRIBUTION, calculate_sample_counts


def test_scenario_exact_counts() -> None:
    plan = calculate_sample_counts(
        100, {'scar': 40, 'redness': 30, 'hematoma': 15, 'necrosis': 10, 'background': 5}
    )
    assert plan == {'scar': 40, 'redness': 30, 'hematoma': 15, 'necrosis': 10, 'background': 5}


def test_plan_sorted_by_count_descending() -> None:
    plan = calculate_sample_counts(1000, DEFAULT_TARGET_DISTRIBUTION)
    assert list(plan) == ['background', 'hematoma', 'scar', 'redness', 'necrosis']
    assert plan['background'] == 350
    assert plan['necrosis'] == 50


def test_sum_always_equals_total_length() -> None:
    rng = np.random.default_rng(0)
    for _ in range(200):
        # Background keeps >= 10% so it can absorb the rounding drift
        raw = rng.dirichlet(np.ones(5)) * 90
        raw[4] += 10
        distribution = dict(zip(['scar', 'redness', 'hematoma', 'necrosis', 'background'], raw))
        total_length = int(rng.integers(20, 5000))
        plan = calculate_sample_counts(total_length, distribution)
        assert sum(plan.values()) == total_length
        assert all(count >= 0 for count in plan.values())


def test_rounding_drift_goes_to_background() -> None:
    distribution = {'scar': 33.33, 'redness': 33.33, 'background': 33.34}
    plan = calculate_sample_counts(10, distribution)
    assert plan['scar'] == 3 and plan['redness'] == 3
    assert plan['background'] == 4


def test_invalid_inputs() -> None:
    with pytest.raises(ValueError):
        calculate_sample_counts(0, DEFAULT_TARGET_DISTRIBUTION)
    with pytest.raises(ValueError):
        calculate_sample_counts(10, {'scar': 100.0})


def test_background_too_small_to_absorb_rounding() -> None:
    distribution = {'scar': 30, 'redness': 30, 'hematoma': 30, 'necrosis': 0, 'background': 10}
    plan = calculate_sample_counts(2, distribution)
    assert sum(plan.values()) == 2
    assert plan['background'] == 0
    # The largest lesion count loses a sample; ties go by class order
    assert plan == {'redness': 1, 'hematoma': 1, 'scar': 0, 'necrosis': 0, 'background': 0}


def test_sum_holds_with_any_background_share() -> None:
    rng = np.random.default_rng(1)
    classes = ['scar', 'redness', 'hematoma', 'necrosis', 'background']
    for _ in range(300):
        distribution = dict(zip(classes, rng.dirichlet(np.ones(5) * 0.5) * 100))
        total_length = int(rng.integers(1, 50))
        plan = calculate_sample_counts(total_length, distribution)
        assert sum(plan.values()) == total_length
        assert all(count >= 0 for count in plan.values())
