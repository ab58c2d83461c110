"""
Reading source pairs and writing generated balanced datasets.

Source layout:
    data_root/
    ├── images/   (*.npy float (H, W, 3) in [0, 1], or *.png / *.jpg)
    └── masks/    (*.npy float (H, W, 5), same stem as the image)

Output layout:
    output_dir/
    ├── images/{i:05d}.npy
    ├── masks/{i:05d}.npy
    └── metadata.json
"""
import json
import logging
import os
from datetime import datetime
from typing import List, Optional

import numpy as np
from PIL import Image

from utils.metrics import ParameterTracker

from .source_catalog import SourceImage, make_sources


logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.npy', '.png', '.jpg', '.jpeg')


def _load_image(path):
    if path.endswith('.npy'):
        image = np.load(path).astype(np.float32)
    else:
        image = np.array(Image.open(path).convert('RGB')).astype(np.float32)
    # Normalize to [0, 1]
    if image.max() > 1:
        image = image / 255.0
    return image


def load_source_pairs(
    data_root: str,
    image_dir: str = 'images',
    mask_dir: str = 'masks',
) -> List[SourceImage]:
    """
    Load annotated source pairs, sorted by file name.

    Source indices follow the sorted order, so exclusion lists stay stable
    across runs as long as the directory content does.

    Raises:
        FileNotFoundError: If a directory or a mask is missing.
    """
    image_root = os.path.join(data_root, image_dir)
    mask_root = os.path.join(data_root, mask_dir)

    for path in (image_root, mask_root):
        if not os.path.isdir(path):
            raise FileNotFoundError(f"Directory not found: {path}")

    image_files = sorted(f for f in os.listdir(image_root) if f.endswith(IMAGE_EXTENSIONS))

    pairs = []
    for image_file in image_files:
        name = os.path.splitext(image_file)[0]
        mask_path = os.path.join(mask_root, f"{name}.npy")
        if not os.path.exists(mask_path):
            raise FileNotFoundError(f"Mask not found for {image_file}: {mask_path}")

        image = _load_image(os.path.join(image_root, image_file))
        mask = np.load(mask_path).astype(np.float32)
        pairs.append((image, mask))

    logger.info(f"Loaded {len(pairs)} source pairs from {data_root}")
    return make_sources(pairs)


def _json_default(value):
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def save_balanced_dataset(
    dataset,
    output_dir: str,
    config=None,
    image_dir: str = 'images',
    mask_dir: str = 'masks',
    metadata_file: str = 'metadata.json',
) -> str:
    """
    Save a generated BalancedDataset.

    Sample `i` of the (shuffled) dataset is written as `{i:05d}.npy` in both
    the image and mask directories; metadata.json lists one record per sample
    in the same order.

    Returns:
        Path of the written metadata.json
    """
    out_image_dir = os.path.join(output_dir, image_dir)
    out_mask_dir = os.path.join(output_dir, mask_dir)
    os.makedirs(out_image_dir, exist_ok=True)
    os.makedirs(out_mask_dir, exist_ok=True)

    samples = []
    for i, (image, mask, source_index, record) in enumerate(zip(
        dataset.inputs, dataset.outputs, dataset.source_indices, dataset.metadata
    )):
        name = f"{i:05d}"
        np.save(os.path.join(out_image_dir, f"{name}.npy"), image.astype(np.float32))
        np.save(os.path.join(out_mask_dir, f"{name}.npy"), mask.astype(np.float32))
        samples.append({'name': name, 'source_index': int(source_index), **record})

    tracker = ParameterTracker().update_all(samples)

    if config is not None and hasattr(config, 'to_dict'):
        config = config.to_dict()

    metadata = {
        'created': datetime.now().isoformat(),
        'num_samples': len(samples),
        'config': config,
        'statistics': dataset.run.summary(),
        'parameter_statistics': tracker.summary(),
        'samples': samples,
    }

    metadata_path = os.path.join(output_dir, metadata_file)
    with open(metadata_path, 'w') as f:
        json.dump(metadata, f, indent=2, default=_json_default)

    logger.info(f"Saved {len(samples)} samples to {output_dir}")
    return metadata_path


def load_balanced_metadata(output_dir: str, metadata_file: str = 'metadata.json') -> dict:
    """
    Load metadata.json of a saved dataset.

    Raises:
        FileNotFoundError: If metadata.json does not exist.
    """
    metadata_path = os.path.join(output_dir, metadata_file)
    if not os.path.exists(metadata_path):
        raise FileNotFoundError(f"metadata.json not found: {metadata_path}")
    with open(metadata_path, 'r') as f:
        return json.load(f)


def load_balanced_sample(
    output_dir: str,
    name: str,
    image_dir: str = 'images',
    mask_dir: str = 'masks',
    mmap_mode: Optional[str] = None,
):
    """Load one saved (image, mask) pair by sample name."""
    image = np.load(os.path.join(output_dir, image_dir, f"{name}.npy"), mmap_mode=mmap_mode)
    mask = np.load(os.path.join(output_dir, mask_dir, f"{name}.npy"), mmap_mode=mmap_mode)
    return image, mask
