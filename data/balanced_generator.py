"""
Balanced augmentation generation.

Synthesises a class-balanced dataset from a small set of annotated wound
images. For every class of the allocation plan the generator repeatedly

    selects a source (weighted by class presence)
    -> samples explicit parameters from a per-attempt seed
    -> smart-crops a large intermediate around the class
    -> applies the geometric pipeline once and grows the patch
    -> applies elastic distortion (pair) and colour/blur (image only)
    -> checks the quality gate

until the class quota is met or its retry budget is spent. Accepted samples
are shuffled together with their source indices and metadata.

Reproducibility:
    The top-level generator draws one seed per class before any work starts.
    Each class stream then yields one `aug_seed` per attempt, and an attempt is
    a pure function of (target_class, aug_seed). Attempts can therefore run in
    a worker pool and be consumed in attempt order with results identical to a
    sequential run.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from multiprocessing import Pool
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from configs.config import CLASS_ORDER, validate_augment_config, validate_target_distribution
from utils.metrics import class_percentages

from .augment_params import (
    SEED_MAX, AugmentationParameters, build_pipelines_from_params,
    sample_augmentation_parameters,
)
from .growth import calculate_intermediate_size, transform_and_grow
from .quality import meets_quality_threshold, quality_threshold
from .smart_crop import apply_smart_crop
from .source_catalog import SourceClassInfo, SourceImage, analyze_source_classes
from .source_selection import NoValidSourcesError, select_source_for_class, selection_weights


logger = logging.getLogger(__name__)

DEFAULT_FG_THRESHOLDS = {
    'scar': 50.0,
    'redness': 50.0,
    'hematoma': 50.0,
    'necrosis': 50.0,
    'background': 100.0,
}

DEFAULT_TARGET_DISTRIBUTION = {
    'scar': 15.0,
    'redness': 15.0,
    'hematoma': 30.0,
    'necrosis': 5.0,
    'background': 35.0,
}

# Entropy tag of the per-attempt stream used for selection and smart cropping
_AUX_STREAM = 1


def _as_dict(value):
    if value is None:
        return None
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    return dict(value)


def _draw_seed(rng) -> int:
    return int(rng.integers(0, SEED_MAX, dtype=np.uint64, endpoint=True))


# =============================================================================
# Allocation
# =============================================================================

def calculate_sample_counts(total_length: int, target_distribution) -> Dict[str, int]:
    """
    Calculate how many samples to generate for each class.

    Counts are rounded per class; the rounding drift is added to (or taken
    from) the background entry so the counts sum to `total_length` exactly.
    When background cannot absorb a surplus it drops to 0 and the rest is
    taken one sample at a time from the largest lesion count.

    Returns:
        Dict class -> count, ordered by count descending (processing order).
    """
    if total_length <= 0:
        raise ValueError(f"total_length must be > 0, got {total_length}")

    distribution = _as_dict(target_distribution)
    if 'background' not in distribution:
        raise ValueError("target_distribution must contain a 'background' entry")

    counts = {cls: int(round(total_length * pct / 100.0)) for cls, pct in distribution.items()}

    diff = total_length - sum(counts.values())
    counts['background'] += diff
    rank = {cls: i for i, cls in enumerate(CLASS_ORDER)}

    surplus = -counts['background']
    if surplus > 0:
        counts['background'] = 0
        lesions = [cls for cls in counts if cls != 'background']
        for _ in range(surplus):
            largest = min(lesions, key=lambda cls: (-counts[cls], rank.get(cls, len(rank))))
            counts[largest] -= 1

    ordered = sorted(counts.items(), key=lambda x: (-x[1], rank.get(x[0], len(rank))))
    return dict(ordered)


# =============================================================================
# Results
# =============================================================================

class RejectionReason(Enum):
    QUALITY = 'quality'
    TRANSFORM_ERROR = 'transform_error'


@dataclass(frozen=True, eq=False)
class AugmentedSample:
    """
    One accepted sample with its full provenance.

    `actual_fg_percentage` is the target-class percentage of the final,
    post-processed mask (the value the quality gate checked);
    `growth_fg_percentage` is the last value measured by the growth loop.
    """
    input: np.ndarray
    output: np.ndarray
    source_index: int
    target_class: str
    smart_crop_window: Tuple[int, int, int, int]
    params: AugmentationParameters
    class_percentages: Dict[str, float]
    size_multiplier: int
    patch_height: int
    patch_width: int
    fg_threshold_used: float
    actual_fg_percentage: float
    growth_fg_percentage: float
    growth_iterations: int
    max_size_reached: bool
    intermediate_height: int
    intermediate_width: int
    crop_sizes: Tuple[Tuple[int, int], ...] = ()
    augmented_index: int = -1
    timestamp: str = ''

    def metadata(self):
        """Flat, JSON-serialisable metadata record."""
        x, y, w, h = self.smart_crop_window
        record = {
            'augmented_index': self.augmented_index,
            'source_index': self.source_index,
            'timestamp': self.timestamp,
            'target_class': self.target_class,
            'smart_crop_x_start': x,
            'smart_crop_y_start': y,
            'smart_crop_width': w,
            'smart_crop_height': h,
        }
        record.update(self.params.to_dict())
        for cls in CLASS_ORDER:
            record[f'{cls}_percentage'] = self.class_percentages[cls]
        record.update({
            'size_multiplier': self.size_multiplier,
            'patch_height': self.patch_height,
            'patch_width': self.patch_width,
            'fg_threshold_used': self.fg_threshold_used,
            'actual_fg_percentage': self.actual_fg_percentage,
            'growth_fg_percentage': self.growth_fg_percentage,
            'growth_iterations': self.growth_iterations,
            'max_size_reached': self.max_size_reached,
            'intermediate_height': self.intermediate_height,
            'intermediate_width': self.intermediate_width,
            'crop_sizes': [list(s) for s in self.crop_sizes],
        })
        return record


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one attempt: either a sample or a rejection reason."""
    target_class: str
    aug_seed: int
    sample: Optional[AugmentedSample] = None
    rejection: Optional[RejectionReason] = None
    source_index: Optional[int] = None
    error: Optional[str] = None

    @property
    def accepted(self):
        return self.sample is not None


@dataclass
class GenerationRun:
    """Bookkeeping of one generation run."""
    target_counts: Dict[str, int]
    counts: Dict[str, int] = field(default_factory=dict)
    attempts: Dict[str, int] = field(default_factory=dict)
    quality_rejections: Dict[str, int] = field(default_factory=dict)
    transform_errors: Dict[str, int] = field(default_factory=dict)
    pixel_distribution: Dict[str, float] = field(
        default_factory=lambda: {cls: 0.0 for cls in CLASS_ORDER}
    )

    def __post_init__(self):
        for cls in self.target_counts:
            self.counts.setdefault(cls, 0)
            self.attempts.setdefault(cls, 0)
            self.quality_rejections.setdefault(cls, 0)
            self.transform_errors.setdefault(cls, 0)

    def record(self, result: AttemptResult):
        cls = result.target_class
        self.attempts[cls] = self.attempts.get(cls, 0) + 1
        if result.accepted:
            self.counts[cls] = self.counts.get(cls, 0) + 1
            for name, pct in result.sample.class_percentages.items():
                self.pixel_distribution[name] += pct
        elif result.rejection is RejectionReason.QUALITY:
            self.quality_rejections[cls] = self.quality_rejections.get(cls, 0) + 1
        else:
            self.transform_errors[cls] = self.transform_errors.get(cls, 0) + 1

    @property
    def total_samples(self):
        return sum(self.counts.values())

    @property
    def total_attempts(self):
        return sum(self.attempts.values())

    @property
    def total_rejections(self):
        return sum(self.quality_rejections.values()) + sum(self.transform_errors.values())

    @property
    def rejection_rate(self):
        """Rejected attempts (quality + errors) over all attempts, in percent."""
        return self.total_rejections / max(1, self.total_attempts) * 100.0

    def class_rejection_rate(self, cls):
        rejected = self.quality_rejections.get(cls, 0) + self.transform_errors.get(cls, 0)
        return rejected / max(1, self.attempts.get(cls, 0)) * 100.0

    def under_filled_classes(self):
        return [cls for cls, target in self.target_counts.items()
                if self.counts.get(cls, 0) < target]

    def mean_pixel_distribution(self):
        n = max(1, self.total_samples)
        return {cls: total / n for cls, total in self.pixel_distribution.items()}

    def summary(self):
        return {
            'total_samples': self.total_samples,
            'total_attempts': self.total_attempts,
            'total_rejections': self.total_rejections,
            'rejection_rate': self.rejection_rate,
            'target_counts': dict(self.target_counts),
            'counts': dict(self.counts),
            'attempts': dict(self.attempts),
            'quality_rejections': dict(self.quality_rejections),
            'transform_errors': dict(self.transform_errors),
            'mean_pixel_distribution': self.mean_pixel_distribution(),
            'under_filled_classes': self.under_filled_classes(),
        }


@dataclass
class BalancedDataset:
    """Shuffled generation output; the four lists stay aligned."""
    inputs: List[np.ndarray]
    outputs: List[np.ndarray]
    source_indices: List[int]
    metadata: List[dict]
    run: GenerationRun

    def __len__(self):
        return len(self.inputs)

    def __getitem__(self, idx):
        return self.inputs[idx], self.outputs[idx], self.source_indices[idx], self.metadata[idx]


def shuffle_together(rng, *lists):
    """Reorder several equally long lists with one shared permutation."""
    lengths = {len(lst) for lst in lists}
    if len(lengths) > 1:
        raise ValueError(f"Cannot shuffle lists of different lengths: {sorted(lengths)}")
    n = lengths.pop() if lengths else 0
    permutation = rng.permutation(n)
    return permutation, tuple([lst[i] for i in permutation] for lst in lists)


# =============================================================================
# Worker pool plumbing
# =============================================================================

_WORKER_GENERATOR = None


def _init_worker(generator):
    global _WORKER_GENERATOR
    _WORKER_GENERATOR = generator


def _attempt_worker(task):
    target_class, aug_seed = task
    return _WORKER_GENERATOR.run_attempt(target_class, aug_seed)


# =============================================================================
# Generator
# =============================================================================

class BalancedDatasetGenerator:
    """
    Generate a class-balanced augmented dataset.

    Usage:
        generator = BalancedDatasetGenerator(sources, total_length=1000, seed=42)
        dataset = generator.generate()
    """

    def __init__(
        self,
        sources: Sequence[SourceImage],
        source_info: Optional[Sequence[SourceClassInfo]] = None,
        target_distribution=None,
        total_length: int = 1000,
        base_size: Tuple[int, int] = (50, 100),
        max_multiplier: int = 4,
        fg_thresholds=None,
        excluded_indices=(),
        seed: int = 42,
        rng=None,
        num_workers: int = 0,
        selection_epsilon: float = 0.01,
        quality_min_percentage: float = 0.5,
        quality_source_ratio: float = 0.3,
        smart_crop_candidates: int = 20,
        class_presence_threshold: float = 0.5,
        rotation_factor: int = 2,
        intermediate_margin: float = 1.2,
        retry_factor: int = 100,
        error_log_every: int = 50,
        elastic=None,
        show_progress: bool = True,
    ):
        """
        Args:
            sources: Annotated source pairs
            source_info: Pre-computed class analysis (computed if None)
            target_distribution: Class -> percent, summing to 100
            total_length: Number of samples to generate
            base_size: (height, width) of a patch at multiplier 1
            max_multiplier: Largest growth multiplier
            fg_thresholds: Class -> maximum class percentage before growing
            excluded_indices: Source indices never selected
            seed: Seed of the top-level generator (ignored if `rng` is given)
            rng: Top-level numpy Generator
            num_workers: Worker processes; 0 or 1 runs sequentially
            show_progress: Show tqdm progress bars
        """
        if len(sources) == 0:
            raise ValueError("At least one source image is required")

        self.sources = list(sources)
        self.source_info = (list(source_info) if source_info is not None
                            else analyze_source_classes(self.sources))
        if len(self.source_info) != len(self.sources):
            raise ValueError(
                f"source_info has {len(self.source_info)} entries for {len(self.sources)} sources"
            )

        self.target_distribution = (_as_dict(target_distribution)
                                    or dict(DEFAULT_TARGET_DISTRIBUTION))
        self.total_length = int(total_length)
        validate_target_distribution(self.total_length, self.target_distribution)
        self.base_size = (int(base_size[0]), int(base_size[1]))
        self.max_multiplier = int(max_multiplier)
        self.fg_thresholds = dict(DEFAULT_FG_THRESHOLDS)
        self.fg_thresholds.update(_as_dict(fg_thresholds) or {})
        self.excluded_indices = frozenset(int(i) for i in excluded_indices)

        self.seed = seed
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.num_workers = int(num_workers or 0)

        self.selection_epsilon = selection_epsilon
        self.quality_min_percentage = quality_min_percentage
        self.quality_source_ratio = quality_source_ratio
        self.smart_crop_candidates = smart_crop_candidates
        self.class_presence_threshold = class_presence_threshold
        self.retry_factor = int(retry_factor)
        self.error_log_every = max(1, int(error_log_every))
        self.elastic = _as_dict(elastic)
        self.show_progress = show_progress

        if self.max_multiplier < 1:
            raise ValueError(f"max_multiplier must be >= 1, got {self.max_multiplier}")

        self.intermediate_size = calculate_intermediate_size(
            self.base_size, self.max_multiplier, rotation_factor, intermediate_margin
        )

    @classmethod
    def from_config(cls, sources, config, source_info=None, rng=None, show_progress=True):
        """Build a generator from `configs.get_augment_config()`."""
        validate_augment_config(config)
        return cls(
            sources,
            source_info=source_info,
            target_distribution=config.target_distribution,
            total_length=config.total_length,
            base_size=tuple(config.base_size),
            max_multiplier=config.max_multiplier,
            fg_thresholds=config.fg_thresholds,
            excluded_indices=tuple(config.excluded_indices),
            seed=config.seed,
            rng=rng,
            num_workers=config.num_workers,
            selection_epsilon=config.selection_epsilon,
            quality_min_percentage=config.quality_min_percentage,
            quality_source_ratio=config.quality_source_ratio,
            smart_crop_candidates=config.smart_crop_candidates,
            class_presence_threshold=config.class_presence_threshold,
            rotation_factor=config.rotation_factor,
            intermediate_margin=config.intermediate_margin,
            retry_factor=config.retry_factor,
            error_log_every=config.error_log_every,
            elastic=config.elastic,
            show_progress=show_progress,
        )

    def __getstate__(self):
        # Workers never touch the top-level stream
        state = self.__dict__.copy()
        state['rng'] = None
        return state

    def allocation(self) -> Dict[str, int]:
        return calculate_sample_counts(self.total_length, self.target_distribution)

    def fg_threshold(self, target_class):
        return self.fg_thresholds.get(target_class, 50.0)

    # -------------------------------------------------------------------------
    # One attempt
    # -------------------------------------------------------------------------

    def run_attempt(self, target_class: str, aug_seed: int) -> AttemptResult:
        """
        Run one attempt. Deterministic in (target_class, aug_seed).

        Raises:
            NoValidSourcesError: Selection has zero total weight (fatal).
        """
        aux_rng = np.random.default_rng([int(aug_seed), _AUX_STREAM])

        position = select_source_for_class(
            self.source_info, target_class, self.excluded_indices,
            rng=aux_rng, epsilon=self.selection_epsilon,
        )
        source = self.sources[position]
        info = self.source_info[position]
        fg_threshold = self.fg_threshold(target_class)

        try:
            params = sample_augmentation_parameters(
                aug_seed, self.intermediate_size, self.base_size, elastic=self.elastic
            )
            geometric, input_only, post = build_pipelines_from_params(params)

            cropped_input, cropped_output, crop_window = apply_smart_crop(
                source, target_class, self.intermediate_size, rng=aux_rng,
                num_candidates=self.smart_crop_candidates,
                threshold=self.class_presence_threshold,
            )

            growth = transform_and_grow(
                cropped_input, cropped_output, geometric, target_class,
                self.base_size, self.max_multiplier, fg_threshold,
            )

            # Elastic on the pair (one displacement field), colour/blur on the image only
            final_input, final_output = post(growth.final_input, growth.final_output)
            final_input = input_only(final_input).astype(np.float32)
            final_output = np.clip(final_output, 0.0, 1.0).astype(np.float32)
        except Exception as exc:
            return AttemptResult(
                target_class=target_class,
                aug_seed=int(aug_seed),
                rejection=RejectionReason.TRANSFORM_ERROR,
                source_index=source.index,
                error=f"{type(exc).__name__}: {exc}",
            )

        if not meets_quality_threshold(
            final_output, target_class, info,
            self.quality_min_percentage, self.quality_source_ratio,
        ):
            return AttemptResult(
                target_class=target_class,
                aug_seed=int(aug_seed),
                rejection=RejectionReason.QUALITY,
                source_index=source.index,
            )

        final_pcts = class_percentages(final_output)
        sample = AugmentedSample(
            input=final_input,
            output=final_output,
            source_index=source.index,
            target_class=target_class,
            smart_crop_window=tuple(int(v) for v in crop_window),
            params=params,
            class_percentages=final_pcts,
            size_multiplier=growth.size_multiplier,
            patch_height=self.base_size[0] * growth.size_multiplier,
            patch_width=self.base_size[1] * growth.size_multiplier,
            fg_threshold_used=fg_threshold,
            actual_fg_percentage=final_pcts[target_class],
            growth_fg_percentage=growth.actual_fg_percentage,
            growth_iterations=growth.growth_iterations,
            max_size_reached=growth.max_size_reached,
            intermediate_height=growth.intermediate_height,
            intermediate_width=growth.intermediate_width,
            crop_sizes=tuple(growth.crop_sizes),
        )
        return AttemptResult(
            target_class=target_class,
            aug_seed=int(aug_seed),
            sample=sample,
            source_index=source.index,
        )

    def replay(self, metadata) -> AugmentedSample:
        """
        Regenerate a sample bit-exactly from its metadata record.

        The generator must use the same sources, exclusions and settings as
        the run that produced the record.
        """
        if isinstance(metadata, AugmentedSample):
            metadata = metadata.metadata()
        result = self.run_attempt(metadata['target_class'], int(metadata['random_seed']))
        if not result.accepted:
            raise ValueError(
                f"Seed {metadata['random_seed']} did not reproduce an accepted sample "
                f"({result.rejection.value}: {result.error})"
            )
        return replace(
            result.sample,
            augmented_index=metadata.get('augmented_index', -1),
            timestamp=metadata.get('timestamp', ''),
        )

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    def _check_selectable(self, target_class):
        weights = selection_weights(
            self.source_info, target_class, self.excluded_indices, self.selection_epsilon
        )
        if weights.sum() <= 0.0:
            raise NoValidSourcesError(target_class, self.excluded_indices)

    def _results(self, target_class, seeds, pool):
        if pool is None:
            for aug_seed in seeds:
                yield self.run_attempt(target_class, aug_seed)
        else:
            chunksize = max(1, len(seeds) // (self.num_workers * 4))
            yield from pool.imap(_attempt_worker, [(target_class, s) for s in seeds],
                                 chunksize=chunksize)

    def _generate_class(self, target_class, quota, class_seed, run, accepted, pool):
        budget = quota * self.retry_factor
        class_rng = np.random.default_rng(class_seed)
        produced = 0
        attempts = 0

        progress = tqdm(total=quota, desc=f'{target_class}', disable=not self.show_progress)
        while produced < quota and attempts < budget:
            if pool is None:
                batch_size = 1
            else:
                batch_size = min(budget - attempts, self.num_workers * 4)
            seeds = [_draw_seed(class_rng) for _ in range(batch_size)]

            results = self._results(target_class, seeds, pool)
            for result in results:
                attempts += 1
                run.record(result)

                if result.accepted:
                    accepted.append(replace(
                        result.sample,
                        augmented_index=len(accepted),
                        timestamp=datetime.now().isoformat(),
                    ))
                    produced += 1
                    progress.update(1)
                elif (result.rejection is RejectionReason.TRANSFORM_ERROR
                      and attempts % self.error_log_every == 0):
                    logger.warning(
                        f"Error (attempt {attempts}, class {target_class}, "
                        f"seed {result.aug_seed}): {result.error}"
                    )

                if produced >= quota:
                    break

            if pool is not None:
                # Let the rest of the batch finish before the next class is dispatched
                for _ in results:
                    pass
        progress.close()

        if produced < quota:
            logger.warning(
                f"Max attempts reached for {target_class}: "
                f"{produced}/{quota} samples after {attempts} attempts"
            )
        logger.info(
            f"Completed {target_class}: {produced} samples "
            f"({run.class_rejection_rate(target_class):.1f}% rejected)"
        )

    def generate(self) -> BalancedDataset:
        """
        Run the whole generation.

        Returns:
            BalancedDataset with inputs, outputs, source indices and metadata
            shuffled together, plus the GenerationRun summary.

        Raises:
            NoValidSourcesError: A class has no selectable source.
        """
        plan = self.allocation()

        logger.info("=== Configuring Balanced Augmentation ===")
        logger.info(f"Base size: {self.base_size}")
        logger.info(
            f"Max multiplier: {self.max_multiplier}x (max size: "
            f"{self.base_size[0] * self.max_multiplier}x{self.base_size[1] * self.max_multiplier})"
        )
        logger.info(f"Intermediate size: {self.intermediate_size}")
        logger.info(f"FG thresholds: {self.fg_thresholds}")
        logger.info(f"Total samples: {self.total_length}")
        logger.info(f"Excluded sources: {sorted(self.excluded_indices)}")
        for cls, count in plan.items():
            logger.info(f"  {cls}: {count} samples ({count / self.total_length * 100:.1f}%)")

        for cls, count in plan.items():
            if count > 0:
                self._check_selectable(cls)

        # Pre-allocate one stream per class so scheduling cannot change seeds
        class_seeds = {cls: _draw_seed(self.rng) for cls in plan}

        run = GenerationRun(target_counts=dict(plan))
        accepted: List[AugmentedSample] = []

        pool = None
        if self.num_workers > 1:
            pool = Pool(self.num_workers, initializer=_init_worker, initargs=(self,))
        try:
            for cls, quota in plan.items():
                if quota <= 0:
                    continue
                logger.info(f"--- Stage: {cls} ({quota} samples) ---")
                self._generate_class(cls, quota, class_seeds[cls], run, accepted, pool)
        finally:
            if pool is not None:
                pool.terminate()
                pool.join()

        _, (inputs, outputs, source_indices, metadata) = shuffle_together(
            self.rng,
            [s.input for s in accepted],
            [s.output for s in accepted],
            [s.source_index for s in accepted],
            [s.metadata() for s in accepted],
        )

        self._log_summary(run)
        return BalancedDataset(
            inputs=inputs,
            outputs=outputs,
            source_indices=source_indices,
            metadata=metadata,
            run=run,
        )

    def _log_summary(self, run: GenerationRun):
        logger.info("=== Generation Complete ===")
        logger.info(f"Total samples: {run.total_samples}")
        logger.info(f"Total attempts: {run.total_attempts}")
        logger.info(f"Rejection rate: {run.rejection_rate:.2f}%")
        total = max(1, run.total_samples)
        for cls, count in sorted(run.counts.items(), key=lambda x: -x[1]):
            flag = '' if count >= run.target_counts.get(cls, 0) else ' (under-filled)'
            logger.info(f"  {cls}: {count}/{run.target_counts.get(cls, 0)} "
                        f"({count / total * 100:.1f}%){flag}")
