"""
Raster transforms for image / class-probability-mask pairs.

Every transform is a deterministic function of its constructor arguments and
the raster it is applied to. Transforms compose left to right with `|`:

    pipeline = Scale(1.05) | ShearX(3.0) | Rotate(42.0) | FlipX()
    image, mask = pipeline(image, mask)

Images are (H, W, 3) float32 in [0, 1]; masks are (H, W, C) float32 class
probabilities with background in the last channel. Pixels that geometric
transforms bring in from outside the frame are filled with 0 for images and
with pure background for masks.
"""
from typing import List, Optional, Sequence

import cv2
import numpy as np
from scipy.ndimage import gaussian_filter


def _image_fill(raster):
    return np.zeros(raster.shape[2], dtype=np.float32)


def _mask_fill(raster):
    fill = np.zeros(raster.shape[2], dtype=np.float32)
    fill[-1] = 1.0
    return fill


def _per_channel(fn, raster, fill):
    """Apply a single-channel cv2 operation to every channel of (H, W, C)."""
    channels = [
        fn(np.ascontiguousarray(raster[:, :, c], dtype=np.float32), float(fill[c]))
        for c in range(raster.shape[2])
    ]
    return np.stack(channels, axis=-1)


def _warp_expanded(raster, linear, fill):
    """
    Apply a 2x2 linear map about the image center, growing the canvas so the
    whole transformed image stays in frame.
    """
    h, w = raster.shape[:2]
    corners = np.array([[0, 0], [w, 0], [0, h], [w, h]], dtype=np.float64)
    corners -= [w / 2.0, h / 2.0]
    moved = corners @ linear.T

    new_w = max(1, int(np.ceil(moved[:, 0].max() - moved[:, 0].min() - 1e-6)))
    new_h = max(1, int(np.ceil(moved[:, 1].max() - moved[:, 1].min() - 1e-6)))

    M = np.zeros((2, 3), dtype=np.float64)
    M[:, :2] = linear
    M[:, 2] = np.array([new_w / 2.0, new_h / 2.0]) - linear @ np.array([w / 2.0, h / 2.0])

    return _per_channel(
        lambda ch, f: cv2.warpAffine(
            ch, M, (new_w, new_h),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=f,
        ),
        raster, fill,
    )


class Transform:
    """
    Base class. Subclasses implement `apply(raster, fill)`.

    `input_only` transforms (photometric) leave the mask of a pair untouched.
    """
    input_only = False

    def apply(self, raster, fill):
        raise NotImplementedError

    def __call__(self, image, mask=None):
        out_image = self.apply(image, _image_fill(image))
        if mask is None:
            return out_image
        if self.input_only:
            return out_image, mask
        return out_image, self.apply(mask, _mask_fill(mask))

    def __or__(self, other):
        return Compose([self, other])

    def __repr__(self):
        args = ', '.join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({args})"


class Compose(Transform):
    """Left-to-right composition of transforms."""

    def __init__(self, transforms: Sequence[Transform]):
        flat: List[Transform] = []
        for t in transforms:
            if isinstance(t, Compose):
                flat.extend(t.transforms)
            else:
                flat.append(t)
        self.transforms = flat

    def __call__(self, image, mask=None):
        if mask is None:
            for t in self.transforms:
                image = t(image)
            return image
        for t in self.transforms:
            image, mask = t(image, mask)
        return image, mask

    def apply(self, raster, fill):
        for t in self.transforms:
            raster = t.apply(raster, fill)
        return raster

    def __len__(self):
        return len(self.transforms)

    def __repr__(self):
        return ' | '.join(repr(t) for t in self.transforms)


# =============================================================================
# Geometric transforms
# =============================================================================

class Scale(Transform):
    """Resize by a factor (both axes)."""

    def __init__(self, factor: float):
        if factor <= 0:
            raise ValueError(f"Scale factor must be positive, got {factor}")
        self.factor = float(factor)

    def apply(self, raster, fill):
        h, w = raster.shape[:2]
        new_h = max(1, int(round(h * self.factor)))
        new_w = max(1, int(round(w * self.factor)))
        return _per_channel(
            lambda ch, f: cv2.resize(ch, (new_w, new_h), interpolation=cv2.INTER_LINEAR),
            raster, fill,
        )


class ShearX(Transform):
    """Horizontal shear by an angle in degrees."""

    def __init__(self, angle: float):
        self.angle = float(angle)

    def apply(self, raster, fill):
        t = np.tan(np.radians(self.angle))
        return _warp_expanded(raster, np.array([[1.0, t], [0.0, 1.0]]), fill)


class ShearY(Transform):
    """Vertical shear by an angle in degrees."""

    def __init__(self, angle: float):
        self.angle = float(angle)

    def apply(self, raster, fill):
        t = np.tan(np.radians(self.angle))
        return _warp_expanded(raster, np.array([[1.0, 0.0], [t, 1.0]]), fill)


class Rotate(Transform):
    """Counter-clockwise rotation in degrees; the canvas grows to fit."""

    def __init__(self, angle: float):
        self.angle = float(angle)

    def apply(self, raster, fill):
        a = np.radians(self.angle)
        cos_a, sin_a = np.cos(a), np.sin(a)
        # Same linear part as cv2.getRotationMatrix2D (y axis points down)
        linear = np.array([[cos_a, sin_a], [-sin_a, cos_a]])
        return _warp_expanded(raster, linear, fill)


class FlipX(Transform):
    """Mirror along the x axis (reverse column order)."""

    def apply(self, raster, fill):
        return np.ascontiguousarray(raster[:, ::-1])


class FlipY(Transform):
    """Mirror along the y axis (reverse row order)."""

    def apply(self, raster, fill):
        return np.ascontiguousarray(raster[::-1])


class NoOp(Transform):
    def apply(self, raster, fill):
        return raster


class CropSize(Transform):
    """Center crop to (height, width)."""

    def __init__(self, height: int, width: int):
        self.height = int(height)
        self.width = int(width)

    def apply(self, raster, fill):
        h, w = raster.shape[:2]
        if self.height <= 0 or self.width <= 0:
            raise ValueError(f"Invalid crop size ({self.height}, {self.width})")
        if self.height > h or self.width > w:
            raise ValueError(
                f"Crop ({self.height}, {self.width}) larger than raster ({h}, {w})"
            )
        y0 = (h - self.height) // 2
        x0 = (w - self.width) // 2
        return np.ascontiguousarray(raster[y0:y0 + self.height, x0:x0 + self.width])


class ElasticDistortion(Transform):
    """
    Smooth random displacement field on a coarse grid, upsampled to the raster.

    The field is a pure function of (seed, raster size), so applying the
    transform to an image and its mask deforms both identically.

    Args:
        grid_h, grid_w: Number of control points per axis
        scale: Maximum displacement as a fraction of one grid cell
        sigma: Gaussian smoothing of the control-point field (in grid units)
        iterations: Number of smoothing passes
        seed: Seed of the displacement field
    """

    def __init__(self, grid_h: int, grid_w: int, scale: float, sigma: float,
                 iterations: int, seed: Optional[int] = 0):
        self.grid_h = int(grid_h)
        self.grid_w = int(grid_w)
        self.scale = float(scale)
        self.sigma = float(sigma)
        self.iterations = int(iterations)
        self.seed = seed

    def _displacement(self, h, w):
        rng = np.random.default_rng(self.seed)
        field = rng.uniform(-1.0, 1.0, size=(2, self.grid_h, self.grid_w))
        for _ in range(self.iterations):
            field = gaussian_filter(field, sigma=(0, self.sigma, self.sigma), mode='reflect')

        peak = np.abs(field).max()
        if peak > 0:
            field = field / peak * self.scale

        dx = cv2.resize(field[0].astype(np.float32), (w, h), interpolation=cv2.INTER_CUBIC)
        dy = cv2.resize(field[1].astype(np.float32), (w, h), interpolation=cv2.INTER_CUBIC)
        return dx * (w / self.grid_w), dy * (h / self.grid_h)

    def apply(self, raster, fill):
        h, w = raster.shape[:2]
        dx, dy = self._displacement(h, w)

        x, y = np.meshgrid(np.arange(w, dtype=np.float32), np.arange(h, dtype=np.float32))
        map_x = np.clip(x + dx, 0, w - 1).astype(np.float32)
        map_y = np.clip(y + dy, 0, h - 1).astype(np.float32)

        return _per_channel(
            lambda ch, f: cv2.remap(
                ch, map_x, map_y,
                interpolation=cv2.INTER_LINEAR,
                borderMode=cv2.BORDER_REFLECT,
            ),
            raster, fill,
        )


# =============================================================================
# Photometric transforms (input only)
# =============================================================================

class ColorJitter(Transform):
    """
    Intensity jitter: brightness * image + offset, clipped to [0, 1].
    """
    input_only = True

    def __init__(self, brightness: float, saturation: float):
        self.brightness = float(brightness)
        self.saturation = float(saturation)

    def apply(self, raster, fill):
        out = raster.astype(np.float32) * self.brightness + self.saturation
        return np.clip(out, 0.0, 1.0)


class GaussianBlur(Transform):
    input_only = True

    def __init__(self, kernel: int, sigma: float):
        if kernel <= 0 or kernel % 2 == 0:
            raise ValueError(f"Blur kernel must be a positive odd number, got {kernel}")
        self.kernel = int(kernel)
        self.sigma = float(sigma)

    def apply(self, raster, fill):
        return _per_channel(
            lambda ch, f: cv2.GaussianBlur(ch, (self.kernel, self.kernel), self.sigma),
            raster, fill,
        )
