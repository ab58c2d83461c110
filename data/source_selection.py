"""
Weighted source selection.

Sources are drawn with probability proportional to how much of the target
class they contain (plus a small epsilon so that every non-excluded source
stays reachable). Background samples are weighted by background percentage.
"""
from typing import Iterable, Sequence

import numpy as np

from .source_catalog import SourceClassInfo


DEFAULT_EPSILON = 0.01


class NoValidSourcesError(ValueError):
    """Every source has zero selection weight for a class (configuration error)."""

    def __init__(self, target_class, excluded_indices):
        self.target_class = target_class
        self.excluded_indices = sorted(excluded_indices)
        super().__init__(
            f"No valid sources available for class '{target_class}' "
            f"(excluded indices: {self.excluded_indices})"
        )

    def __reduce__(self):
        # Crosses process boundaries when raised inside a worker pool
        return (type(self), (self.target_class, self.excluded_indices))


def selection_weights(
    source_info: Sequence[SourceClassInfo],
    target_class: str,
    excluded_indices: Iterable[int] = (),
    epsilon: float = DEFAULT_EPSILON,
) -> np.ndarray:
    """
    Unnormalised selection weight of every source.

    Excluded sources (matched on SourceClassInfo.source_index) get weight 0.
    """
    excluded = set(excluded_indices)
    weights = np.array(
        [info.percentage(target_class) + epsilon for info in source_info],
        dtype=np.float64,
    )
    for position, info in enumerate(source_info):
        if info.source_index in excluded:
            weights[position] = 0.0
    return weights


def select_source_for_class(
    source_info: Sequence[SourceClassInfo],
    target_class: str,
    excluded_indices: Iterable[int] = (),
    rng=None,
    epsilon: float = DEFAULT_EPSILON,
) -> int:
    """
    Select a source weighted by presence of the target class.

    Args:
        source_info: Class analysis of every source
        target_class: Class to weight selection by
        excluded_indices: Source indices that must never be returned
        rng: numpy Generator providing the uniform draw
        epsilon: Weight added to every source

    Returns:
        Position of the selected source in `source_info`.

    Raises:
        NoValidSourcesError: If the total weight is zero.
    """
    excluded = set(excluded_indices)
    weights = selection_weights(source_info, target_class, excluded, epsilon)

    total_weight = weights.sum()
    if total_weight <= 0.0:
        raise NoValidSourcesError(target_class, excluded)

    if rng is None:
        rng = np.random.default_rng()

    probabilities = weights / total_weight
    sample_val = rng.random()

    # Inverse-CDF sampling
    cumulative = np.cumsum(probabilities)
    position = int(np.searchsorted(cumulative, sample_val, side='left'))
    if position >= len(weights) or weights[position] == 0.0:
        # Zero draw on a leading excluded source, or float round-off at the top of the CDF
        reachable = np.flatnonzero(weights > 0)
        later = reachable[reachable >= position]
        position = int(later[0]) if len(later) else int(reachable[-1])
    return position
