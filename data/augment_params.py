"""
Explicit, seed-driven augmentation parameters.

Every value needed to reproduce one augmented sample is drawn up front from a
dedicated random stream seeded with the sample's `aug_seed`. The draw order is
fixed and must not change, otherwise old seeds map to different parameters:

    1. scale factor          0.90 .. 1.10   step 0.01
    2. shear x angle        -10.0 .. 10.0   step 0.1
    3. shear y angle        -10.0 .. 10.0   step 0.1
    4. rotation angle         1.0 .. 360.0  step 0.1
    5. flip choice          flipx | flipy | noop
    6. final crop y start   0 .. intermediate_h - target_h
    7. final crop x start   0 .. intermediate_w - target_w
    8. brightness factor      0.8 .. 1.2    step 0.1
    9. saturation offset     -0.2 .. 0.2    step 0.1
   10. blur kernel size     3 | 5 | 7
   11. blur sigma             1.0 .. 3.0    step 0.1

Elastic distortion constants are fixed and not drawn.
"""
from dataclasses import asdict, dataclass
from typing import Tuple

import numpy as np

from .transforms import (
    ColorJitter, Compose, ElasticDistortion, FlipX, FlipY, GaussianBlur,
    NoOp, Rotate, Scale, ShearX, ShearY,
)


FLIP_TYPES = ('flipx', 'flipy', 'noop')
BLUR_KERNELS = (3, 5, 7)

# (start, stop, step) grids, inclusive on both ends
SCALE_GRID = (0.9, 1.1, 0.01)
SHEAR_GRID = (-10.0, 10.0, 0.1)
ROTATION_GRID = (1.0, 360.0, 0.1)
BRIGHTNESS_GRID = (0.8, 1.2, 0.1)
SATURATION_GRID = (-0.2, 0.2, 0.1)
BLUR_SIGMA_GRID = (1.0, 3.0, 0.1)

ELASTIC_DEFAULTS = {
    'grid_h': 8,
    'grid_w': 8,
    'scale': 0.2,
    'sigma': 2.0,
    'iterations': 1,
}

SEED_MAX = np.iinfo(np.uint64).max


@dataclass(frozen=True)
class AugmentationParameters:
    """Every value needed to reproduce one transform exactly."""
    random_seed: int

    # Geometric
    scale_factor: float
    shear_x_angle: float
    shear_y_angle: float
    rotation_angle: float
    flip_type: str

    # Final crop (0-based offsets into the intermediate)
    final_crop_y_start: int
    final_crop_x_start: int
    final_crop_height: int
    final_crop_width: int

    # Elastic distortion
    elastic_grid_h: int
    elastic_grid_w: int
    elastic_scale: float
    elastic_sigma: float
    elastic_iterations: int

    # Photometric (input only)
    brightness_factor: float
    saturation_offset: float
    blur_kernel_size: int
    blur_sigma: float

    def to_dict(self):
        return asdict(self)


def _draw_from_grid(rng, grid):
    start, stop, step = grid
    n = int(round((stop - start) / step)) + 1
    k = int(rng.integers(0, n))
    # Round away float noise so equal grid points compare equal
    return round(start + k * step, 10)


def sample_augmentation_parameters(
    seed: int,
    intermediate_size: Tuple[int, int],
    target_size: Tuple[int, int],
    elastic=None,
) -> AugmentationParameters:
    """
    Sample all augmentation parameters from a seed.

    Args:
        seed: Unsigned 64-bit seed for this sample
        intermediate_size: (height, width) of the smart-cropped intermediate
        target_size: (height, width) of the final crop
        elastic: Optional mapping overriding ELASTIC_DEFAULTS

    Returns:
        AugmentationParameters. Same inputs always give identical parameters.
    """
    seed = int(seed)
    if seed < 0 or seed > SEED_MAX:
        raise ValueError(f"Seed must be an unsigned 64-bit integer, got {seed}")

    elastic_params = dict(ELASTIC_DEFAULTS)
    if elastic is not None:
        elastic_params.update(dict(elastic))

    rng = np.random.default_rng(seed)

    scale_factor = _draw_from_grid(rng, SCALE_GRID)
    shear_x_angle = _draw_from_grid(rng, SHEAR_GRID)
    shear_y_angle = _draw_from_grid(rng, SHEAR_GRID)
    rotation_angle = _draw_from_grid(rng, ROTATION_GRID)
    flip_type = FLIP_TYPES[int(rng.integers(0, len(FLIP_TYPES)))]

    crop_y_start = int(rng.integers(0, max(1, intermediate_size[0] - target_size[0] + 1)))
    crop_x_start = int(rng.integers(0, max(1, intermediate_size[1] - target_size[1] + 1)))

    brightness_factor = _draw_from_grid(rng, BRIGHTNESS_GRID)
    saturation_offset = _draw_from_grid(rng, SATURATION_GRID)
    blur_kernel_size = BLUR_KERNELS[int(rng.integers(0, len(BLUR_KERNELS)))]
    blur_sigma = _draw_from_grid(rng, BLUR_SIGMA_GRID)

    return AugmentationParameters(
        random_seed=seed,
        scale_factor=scale_factor,
        shear_x_angle=shear_x_angle,
        shear_y_angle=shear_y_angle,
        rotation_angle=rotation_angle,
        flip_type=flip_type,
        final_crop_y_start=crop_y_start,
        final_crop_x_start=crop_x_start,
        final_crop_height=int(target_size[0]),
        final_crop_width=int(target_size[1]),
        elastic_grid_h=int(elastic_params['grid_h']),
        elastic_grid_w=int(elastic_params['grid_w']),
        elastic_scale=float(elastic_params['scale']),
        elastic_sigma=float(elastic_params['sigma']),
        elastic_iterations=int(elastic_params['iterations']),
        brightness_factor=brightness_factor,
        saturation_offset=saturation_offset,
        blur_kernel_size=blur_kernel_size,
        blur_sigma=blur_sigma,
    )


def build_pipelines_from_params(params: AugmentationParameters):
    """
    Build the three pipelines of one sample from its parameters.

    Returns:
        (geometric, input_only, post) pipelines:
        - geometric: scale -> shear x -> shear y -> rotation -> flip (pair)
        - input_only: colour jitter -> Gaussian blur (image only)
        - post: elastic distortion (pair, shared displacement field)
    """
    if params.flip_type == 'flipx':
        flip = FlipX()
    elif params.flip_type == 'flipy':
        flip = FlipY()
    else:
        flip = NoOp()

    geometric = (Scale(params.scale_factor)
                 | ShearX(params.shear_x_angle)
                 | ShearY(params.shear_y_angle)
                 | Rotate(params.rotation_angle)
                 | flip)

    input_only = (ColorJitter(params.brightness_factor, params.saturation_offset)
                  | GaussianBlur(params.blur_kernel_size, params.blur_sigma))

    post = Compose([ElasticDistortion(
        params.elastic_grid_h,
        params.elastic_grid_w,
        params.elastic_scale,
        params.elastic_sigma,
        params.elastic_iterations,
        seed=params.random_seed,
    )])

    return geometric, input_only, post
