from .config import (
    CLASS_ORDER,
    get_config,
    get_augment_config,
    get_io_config,
    validate_augment_config,
    validate_target_distribution,
)

__all__ = [
    'CLASS_ORDER',
    'get_config',
    'get_augment_config',
    'get_io_config',
    'validate_augment_config',
    'validate_target_distribution',
]
