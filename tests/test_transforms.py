from __future__ import annotations

import numpy as np
import pytest

from _synthetic import make_pair
from data.transforms import (
    ColorJitter,
    Compose,
    CropSize,
    ElasticDistortion,
    FlipX,
    FlipY,
    GaussianBlur,
    NoOp,
    Rotate,
    Scale,
    ShearX,
    ShearY,
)


def test_flips_reverse_axes() -> None:
    image, mask = make_pair(height=20, width=30)
    fx_image, fx_mask = FlipX()(image, mask)
    np.testing.assert_array_equal(fx_image, image[:, ::-1])
    np.testing.assert_array_equal(fx_mask, mask[:, ::-1])

    fy_image = FlipY()(image)
    np.testing.assert_array_equal(fy_image, image[::-1])


def test_noop_is_identity() -> None:
    image, mask = make_pair(height=20, width=30)
    out_image, out_mask = NoOp()(image, mask)
    np.testing.assert_array_equal(out_image, image)
    np.testing.assert_array_equal(out_mask, mask)


def test_scale_resizes_both() -> None:
    image, mask = make_pair(height=100, width=200)
    out_image, out_mask = Scale(1.1)(image, mask)
    assert out_image.shape == (110, 220, 3)
    assert out_mask.shape == (110, 220, 5)
    with pytest.raises(ValueError):
        Scale(0.0)


def test_rotation_expands_canvas_and_fills_background() -> None:
    image, mask = make_pair(height=40, width=80, blocks={})
    out_image, out_mask = Rotate(45.0)(image, mask)
    assert out_image.shape[0] > 40 and out_image.shape[1] > 80
    # Corners come from outside the frame: black image, pure background mask
    np.testing.assert_allclose(out_image[0, 0], 0.0)
    np.testing.assert_allclose(out_mask[0, 0], [0, 0, 0, 0, 1])


def test_shear_keeps_mask_normalised() -> None:
    _, mask = make_pair(height=40, width=80)
    sheared = (ShearX(8.0) | ShearY(-5.0))(mask[:, :, :3], mask)[1]
    np.testing.assert_allclose(sheared.sum(axis=2), 1.0, atol=1e-4)


def test_crop_size_center_and_errors() -> None:
    image, mask = make_pair(height=40, width=80)
    out_image, out_mask = CropSize(20, 40)(image, mask)
    np.testing.assert_array_equal(out_image, image[10:30, 20:60])
    np.testing.assert_array_equal(out_mask, mask[10:30, 20:60])
    with pytest.raises(ValueError):
        CropSize(41, 10)(image, mask)


def test_photometric_transforms_leave_mask_untouched() -> None:
    image, mask = make_pair(height=30, width=40)
    pipeline = ColorJitter(1.2, 0.1) | GaussianBlur(5, 1.5)
    out_image, out_mask = pipeline(image, mask)
    assert out_mask is mask
    assert out_image.shape == image.shape
    assert out_image.min() >= 0.0 and out_image.max() <= 1.0


def test_color_jitter_formula() -> None:
    image = np.full((4, 4, 3), 0.5, dtype=np.float32)
    np.testing.assert_allclose(ColorJitter(0.8, -0.2)(image), 0.2, atol=1e-6)
    np.testing.assert_allclose(ColorJitter(1.2, 0.2)(image), 0.8, atol=1e-6)


def test_blur_rejects_even_kernel() -> None:
    with pytest.raises(ValueError):
        GaussianBlur(4, 1.0)


def test_elastic_is_deterministic_and_shared_by_pair() -> None:
    image, mask = make_pair(height=60, width=90)
    elastic = ElasticDistortion(8, 8, 0.2, 2.0, 1, seed=123)
    a_image, a_mask = elastic(image, mask)
    b_image, b_mask = elastic(image, mask)
    np.testing.assert_array_equal(a_image, b_image)
    np.testing.assert_array_equal(a_mask, b_mask)
    assert a_mask.shape == mask.shape

    other = ElasticDistortion(8, 8, 0.2, 2.0, 1, seed=124)(image, mask)[1]
    assert not np.array_equal(a_mask, other)


def test_compose_flattens_and_is_associative() -> None:
    image, mask = make_pair(height=40, width=60)
    a, b, c = Scale(1.05), ShearX(3.0), FlipX()
    left = (a | b) | c
    right = a | (b | c)
    assert isinstance(left, Compose) and len(left) == 3
    l_image, l_mask = left(image, mask)
    r_image, r_mask = right(image, mask)
    np.testing.assert_array_equal(l_image, r_image)
    np.testing.assert_array_equal(l_mask, r_mask)
