"""
Configuration file for the balanced wound augmentation project.
Covers the five wound tissue classes: scar, redness, hematoma, necrosis, background.
"""
import ml_collections


CLASS_ORDER = ('scar', 'redness', 'hematoma', 'necrosis', 'background')


def get_augment_config():
    """Returns the balanced augmentation configuration."""
    config = ml_collections.ConfigDict()

    # Run size and reproducibility
    config.total_length = 1000
    config.seed = 42
    config.num_workers = 0  # 0 or 1 = sequential

    # Target class distribution (percent, must sum to 100)
    config.target_distribution = ml_collections.ConfigDict()
    config.target_distribution.scar = 15.0
    config.target_distribution.redness = 15.0
    config.target_distribution.hematoma = 30.0
    config.target_distribution.necrosis = 5.0
    config.target_distribution.background = 35.0

    # Patch geometry
    config.base_size = (50, 100)  # (height, width)
    config.max_multiplier = 4
    config.rotation_factor = 2  # Room for the rotated diagonal
    config.intermediate_margin = 1.2

    # Maximum foreground percentage before the patch grows
    config.fg_thresholds = ml_collections.ConfigDict()
    config.fg_thresholds.scar = 50.0
    config.fg_thresholds.redness = 50.0
    config.fg_thresholds.hematoma = 50.0
    config.fg_thresholds.necrosis = 50.0
    config.fg_thresholds.background = 100.0  # Background patches never grow

    # Sources left out of every stage (e.g. poor quality images)
    config.excluded_indices = ()

    # Source selection and smart cropping
    config.selection_epsilon = 0.01
    config.smart_crop_candidates = 20
    config.class_presence_threshold = 0.5

    # Quality gate: actual >= max(min_percentage, source_pct * source_ratio)
    config.quality_min_percentage = 0.5
    config.quality_source_ratio = 0.3

    # Retry budget and error log sampling
    config.retry_factor = 100
    config.error_log_every = 50

    # Elastic distortion (fixed for every sample)
    config.elastic = ml_collections.ConfigDict()
    config.elastic.grid_h = 8
    config.elastic.grid_w = 8
    config.elastic.scale = 0.2
    config.elastic.sigma = 2.0
    config.elastic.iterations = 1

    return config


def get_io_config():
    """Returns input/output locations for the generation script."""
    config = ml_collections.ConfigDict()

    config.data_root = './dataset/sources'
    config.output_dir = './dataset/augmented_balanced'
    config.image_dir = 'images'
    config.mask_dir = 'masks'
    config.metadata_file = 'metadata.json'

    return config


def _as_dict(value):
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    return dict(value)


def validate_target_distribution(total_length, target_distribution):
    """
    Check a sample count and class distribution before allocation.

    Raises:
        ValueError: If the length is not positive, or the distribution names
            unknown classes, lacks background, has a negative share or does
            not sum to 100.
    """
    if total_length <= 0:
        raise ValueError(f"total_length must be > 0, got {total_length}")

    distribution = _as_dict(target_distribution)
    unknown = sorted(set(distribution) - set(CLASS_ORDER))
    if unknown:
        raise ValueError(f"Unknown classes in target_distribution: {unknown}")
    if 'background' not in distribution:
        raise ValueError("target_distribution must contain a 'background' entry")
    if any(pct < 0 for pct in distribution.values()):
        raise ValueError("target_distribution percentages must be non-negative")
    total = sum(distribution.values())
    if abs(total - 100.0) >= 0.01:
        raise ValueError(f"target_distribution must sum to 100, got {total:.4f}")


def validate_augment_config(config):
    """
    Validate an augmentation config before any generation work starts.

    Raises:
        ValueError: If any option is out of range or inconsistent.
    """
    validate_target_distribution(config.total_length, config.target_distribution)

    base_h, base_w = config.base_size
    if base_h <= 0 or base_w <= 0:
        raise ValueError(f"base_size must be positive, got {tuple(config.base_size)}")
    if config.max_multiplier < 1:
        raise ValueError(f"max_multiplier must be >= 1, got {config.max_multiplier}")

    thresholds = _as_dict(config.fg_thresholds)
    unknown = sorted(set(thresholds) - set(CLASS_ORDER))
    if unknown:
        raise ValueError(f"Unknown classes in fg_thresholds: {unknown}")

    if config.retry_factor < 1:
        raise ValueError(f"retry_factor must be >= 1, got {config.retry_factor}")

    return True


def get_config():
    """Returns the complete configuration."""
    config = ml_collections.ConfigDict()

    config.augment = get_augment_config()
    config.io = get_io_config()

    return config
