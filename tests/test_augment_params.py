from __future__ import annotations

import numpy as np
import pytest

from data.augment_params import (
    BLUR_KERNELS,
    FLIP_TYPES,
    SEED_MAX,
    build_pipelines_from_params,
    sample_augmentation_parameters,
)
from data.transforms import ColorJitter, ElasticDistortion, FlipX, GaussianBlur, NoOp, FlipY

INTERMEDIATE = (480, 960)
TARGET = (50, 100)


@pytest.mark.parametrize('seed', [0, 1, 42, 2**32 + 5, SEED_MAX])
def test_same_seed_same_parameters(seed: int) -> None:
    a = sample_augmentation_parameters(seed, INTERMEDIATE, TARGET)
    b = sample_augmentation_parameters(seed, INTERMEDIATE, TARGET)
    assert a == b
    assert a.to_dict() == b.to_dict()
    assert a.random_seed == seed


def test_different_seeds_differ() -> None:
    params = {sample_augmentation_parameters(s, INTERMEDIATE, TARGET) for s in range(20)}
    assert len(params) > 1


def test_ranges_over_many_seeds() -> None:
    for seed in range(300):
        p = sample_augmentation_parameters(seed, INTERMEDIATE, TARGET)
        assert 0.9 <= p.scale_factor <= 1.1
        assert -10.0 <= p.shear_x_angle <= 10.0
        assert -10.0 <= p.shear_y_angle <= 10.0
        assert 1.0 <= p.rotation_angle <= 360.0
        assert p.flip_type in FLIP_TYPES
        assert 0.8 <= p.brightness_factor <= 1.2
        assert -0.2 <= p.saturation_offset <= 0.2
        assert p.blur_kernel_size in BLUR_KERNELS
        assert 1.0 <= p.blur_sigma <= 3.0
        assert 0 <= p.final_crop_y_start <= INTERMEDIATE[0] - TARGET[0]
        assert 0 <= p.final_crop_x_start <= INTERMEDIATE[1] - TARGET[1]
        assert (p.final_crop_height, p.final_crop_width) == TARGET


def test_values_lie_on_grids() -> None:
    for seed in range(100):
        p = sample_augmentation_parameters(seed, INTERMEDIATE, TARGET)
        assert round(p.scale_factor * 100) == pytest.approx(p.scale_factor * 100)
        assert round(p.rotation_angle * 10) == pytest.approx(p.rotation_angle * 10)
        assert round(p.brightness_factor * 10) == pytest.approx(p.brightness_factor * 10)


def test_elastic_constants_fixed_and_overridable() -> None:
    p = sample_augmentation_parameters(3, INTERMEDIATE, TARGET)
    assert (p.elastic_grid_h, p.elastic_grid_w, p.elastic_scale,
            p.elastic_sigma, p.elastic_iterations) == (8, 8, 0.2, 2.0, 1)

    q = sample_augmentation_parameters(3, INTERMEDIATE, TARGET, elastic={'grid_h': 4})
    assert q.elastic_grid_h == 4
    # Elastic constants are not drawn, so the other values stay the same
    assert q.rotation_angle == p.rotation_angle


def test_invalid_seed() -> None:
    with pytest.raises(ValueError):
        sample_augmentation_parameters(-1, INTERMEDIATE, TARGET)
    with pytest.raises(ValueError):
        sample_augmentation_parameters(SEED_MAX + 1, INTERMEDIATE, TARGET)


def test_intermediate_smaller_than_target_gives_zero_offsets() -> None:
    p = sample_augmentation_parameters(11, (40, 80), TARGET)
    assert p.final_crop_y_start == 0
    assert p.final_crop_x_start == 0


def test_pipelines_follow_parameters() -> None:
    p = sample_augmentation_parameters(5, INTERMEDIATE, TARGET)
    geometric, input_only, post = build_pipelines_from_params(p)

    names = [type(t).__name__ for t in geometric.transforms]
    assert names[:4] == ['Scale', 'ShearX', 'ShearY', 'Rotate']
    expected_flip = {'flipx': FlipX, 'flipy': FlipY, 'noop': NoOp}[p.flip_type]
    assert isinstance(geometric.transforms[4], expected_flip)

    jitter, blur = input_only.transforms
    assert isinstance(jitter, ColorJitter) and isinstance(blur, GaussianBlur)
    assert blur.kernel == p.blur_kernel_size

    (elastic,) = post.transforms
    assert isinstance(elastic, ElasticDistortion)
    assert elastic.seed == p.random_seed


def test_pipeline_is_deterministic() -> None:
    rng = np.random.default_rng(0)
    image = rng.uniform(size=(60, 120, 3)).astype(np.float32)
    mask = np.zeros((60, 120, 5), dtype=np.float32)
    mask[:, :, 4] = 1.0

    p = sample_augmentation_parameters(99, (60, 120), (10, 20))
    out = [build_pipelines_from_params(p)[0](image, mask) for _ in range(2)]
    np.testing.assert_array_equal(out[0][0], out[1][0])
    np.testing.assert_array_equal(out[0][1], out[1][1])
