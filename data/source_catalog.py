"""
Source image catalog for balanced wound augmentation.

Each source is an annotated pair:
    input:  (H, W, 3) float RGB image
    output: (H, W, 5) float class probabilities for
            scar, redness, hematoma, necrosis, background

The catalog analyses how much of every class each source contains. The
percentages drive weighted source selection and the adaptive quality gate.
"""
import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from configs.config import CLASS_ORDER


logger = logging.getLogger(__name__)

# Channel index of every class in the output raster
CLASS_INDEX = {name: idx for idx, name in enumerate(CLASS_ORDER)}
FOREGROUND_CLASSES = CLASS_ORDER[:-1]
NUM_CLASSES = len(CLASS_ORDER)


def get_class_index(target_class: str) -> int:
    """Get the output channel index for a class name."""
    if target_class not in CLASS_INDEX:
        raise ValueError(f"Unknown class '{target_class}', expected one of {CLASS_ORDER}")
    return CLASS_INDEX[target_class]


@dataclass(frozen=True, eq=False)
class SourceImage:
    """Immutable annotated source pair."""
    input: np.ndarray
    output: np.ndarray
    index: int

    def __post_init__(self):
        if self.input.ndim != 3 or self.output.ndim != 3:
            raise ValueError(f"Source {self.index}: rasters must be (H, W, C)")
        if self.input.shape[:2] != self.output.shape[:2]:
            raise ValueError(
                f"Source {self.index}: input {self.input.shape[:2]} and "
                f"output {self.output.shape[:2]} sizes differ"
            )
        if self.output.shape[2] != NUM_CLASSES:
            raise ValueError(
                f"Source {self.index}: output must have {NUM_CLASSES} class channels, "
                f"got {self.output.shape[2]}"
            )

    @property
    def height(self) -> int:
        return self.output.shape[0]

    @property
    def width(self) -> int:
        return self.output.shape[1]


@dataclass(frozen=True)
class SourceClassInfo:
    """Class distribution of a single source image (percentages 0-100)."""
    source_index: int
    scar_percentage: float
    redness_percentage: float
    hematoma_percentage: float
    necrosis_percentage: float
    background_percentage: float
    total_pixels: int

    def percentage(self, target_class: str) -> float:
        get_class_index(target_class)
        return getattr(self, f"{target_class}_percentage")

    def to_dict(self):
        return {
            'source_index': self.source_index,
            'scar_percentage': self.scar_percentage,
            'redness_percentage': self.redness_percentage,
            'hematoma_percentage': self.hematoma_percentage,
            'necrosis_percentage': self.necrosis_percentage,
            'background_percentage': self.background_percentage,
            'total_pixels': self.total_pixels,
        }


def make_sources(pairs) -> List[SourceImage]:
    """
    Wrap (input, output) or (input, output, index) tuples as SourceImages.

    Rasters are converted to float32 and marked read-only. Indices default to
    the position in `pairs`.
    """
    sources = []
    for position, pair in enumerate(pairs):
        input_raster, output_raster = pair[0], pair[1]
        index = pair[2] if len(pair) >= 3 else position

        input_raster = np.array(input_raster, dtype=np.float32)
        output_raster = np.array(output_raster, dtype=np.float32)
        input_raster.setflags(write=False)
        output_raster.setflags(write=False)

        sources.append(SourceImage(input=input_raster, output=output_raster, index=int(index)))
    return sources


def analyze_source(source: SourceImage) -> SourceClassInfo:
    """Compute the class percentages of one source."""
    output = source.output
    total_pixels = output.shape[0] * output.shape[1]
    if total_pixels == 0:
        raise ValueError(f"Source {source.index} has an empty output raster")

    areas = output.reshape(-1, output.shape[2]).sum(axis=0, dtype=np.float64)
    pct = areas / total_pixels * 100.0

    return SourceClassInfo(
        source_index=source.index,
        scar_percentage=float(pct[CLASS_INDEX['scar']]),
        redness_percentage=float(pct[CLASS_INDEX['redness']]),
        hematoma_percentage=float(pct[CLASS_INDEX['hematoma']]),
        necrosis_percentage=float(pct[CLASS_INDEX['necrosis']]),
        background_percentage=float(pct[CLASS_INDEX['background']]),
        total_pixels=int(total_pixels),
    )


def analyze_source_classes(sources: Sequence[SourceImage]) -> List[SourceClassInfo]:
    """
    Analyze class distribution for all source images.

    Args:
        sources: Source images, in catalog order

    Returns:
        One SourceClassInfo per source, in the same order
    """
    source_info = []
    for position, source in enumerate(sources, start=1):
        source_info.append(analyze_source(source))
        if position == 1 or position % 100 == 0 or position == len(sources):
            logger.info(f"Analyzed {position}/{len(sources)} sources")
    return source_info


def summarize_source_classes(source_info: Sequence[SourceClassInfo]):
    """Mean class percentage over all sources."""
    if not source_info:
        return {name: 0.0 for name in CLASS_ORDER}
    return {
        name: float(np.mean([info.percentage(name) for info in source_info]))
        for name in CLASS_ORDER
    }
