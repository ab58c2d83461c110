from .source_catalog import (
    # Constants
    CLASS_INDEX,
    FOREGROUND_CLASSES,
    NUM_CLASSES,
    # Source catalog
    SourceImage,
    SourceClassInfo,
    get_class_index,
    make_sources,
    analyze_source,
    analyze_source_classes,
    summarize_source_classes,
)

from .transforms import (
    Transform,
    Compose,
    Scale,
    ShearX,
    ShearY,
    Rotate,
    FlipX,
    FlipY,
    NoOp,
    CropSize,
    ElasticDistortion,
    ColorJitter,
    GaussianBlur,
)

from .augment_params import (
    AugmentationParameters,
    sample_augmentation_parameters,
    build_pipelines_from_params,
)

from .source_selection import (
    NoValidSourcesError,
    selection_weights,
    select_source_for_class,
)

from .smart_crop import (
    smart_crop_for_class,
    apply_smart_crop,
)

from .growth import (
    GrowthResult,
    calculate_intermediate_size,
    grow_patch,
    transform_and_grow,
)

from .quality import (
    quality_threshold,
    meets_quality_threshold,
)

from .balanced_generator import (
    DEFAULT_FG_THRESHOLDS,
    DEFAULT_TARGET_DISTRIBUTION,
    calculate_sample_counts,
    RejectionReason,
    AugmentedSample,
    AttemptResult,
    GenerationRun,
    BalancedDataset,
    BalancedDatasetGenerator,
)

from .balanced_io import (
    load_source_pairs,
    save_balanced_dataset,
    load_balanced_metadata,
    load_balanced_sample,
)

from .balanced_dataset import (
    BalancedAugmentedDataset,
    get_balanced_dataloaders,
)

__all__ = [
    # Constants
    'CLASS_INDEX',
    'FOREGROUND_CLASSES',
    'NUM_CLASSES',
    'DEFAULT_FG_THRESHOLDS',
    'DEFAULT_TARGET_DISTRIBUTION',
    # Source catalog
    'SourceImage',
    'SourceClassInfo',
    'get_class_index',
    'make_sources',
    'analyze_source',
    'analyze_source_classes',
    'summarize_source_classes',
    # Transforms
    'Transform',
    'Compose',
    'Scale',
    'ShearX',
    'ShearY',
    'Rotate',
    'FlipX',
    'FlipY',
    'NoOp',
    'CropSize',
    'ElasticDistortion',
    'ColorJitter',
    'GaussianBlur',
    # Parameter sampling
    'AugmentationParameters',
    'sample_augmentation_parameters',
    'build_pipelines_from_params',
    # Source selection
    'NoValidSourcesError',
    'selection_weights',
    'select_source_for_class',
    # Smart crop
    'smart_crop_for_class',
    'apply_smart_crop',
    # Growth
    'GrowthResult',
    'calculate_intermediate_size',
    'grow_patch',
    'transform_and_grow',
    # Quality gate
    'quality_threshold',
    'meets_quality_threshold',
    # Balanced generation
    'calculate_sample_counts',
    'RejectionReason',
    'AugmentedSample',
    'AttemptResult',
    'GenerationRun',
    'BalancedDataset',
    'BalancedDatasetGenerator',
    # I/O
    'load_source_pairs',
    'save_balanced_dataset',
    'load_balanced_metadata',
    'load_balanced_sample',
    # Torch dataset
    'BalancedAugmentedDataset',
    'get_balanced_dataloaders',
]
