"""
Balanced Augmented Dataset for segmentation training.

Loads samples written by scripts/generate_balanced_data.py. Uses metadata.json
for fast sample indexing (no directory scanning).

Directory structure:
    data_root/
    ├── images/         ({i:05d}.npy, float (H, W, 3))
    ├── masks/          ({i:05d}.npy, float (H, W, 5))
    └── metadata.json   (sample index and provenance)
"""
from typing import List, Optional, Tuple

import numpy as np
import torch
from torch.utils.data import DataLoader, Dataset

from configs.config import CLASS_ORDER

from .balanced_io import load_balanced_metadata, load_balanced_sample


class BalancedAugmentedDataset(Dataset):
    """
    Dataset over a saved balanced augmentation run.

    Patches come in several sizes (base size x multiplier), so the default
    collate only works with batch_size=1 unless `target_class` or a
    `size_multiplier` filter keeps one size.

    Returns dicts with:
        image: (3, H, W) float tensor
        label: (H, W) long tensor, argmax class index
        mask: (5, H, W) float tensor, class probabilities
        name, source_index, target_class
    """

    def __init__(
        self,
        data_root: str,
        target_class: Optional[str] = None,
        size_multiplier: Optional[int] = None,
        split_ratio: float = 1.0,
        is_train: bool = True,
        seed: int = 42,
    ):
        self.data_root = data_root
        self.is_train = is_train

        meta = load_balanced_metadata(data_root)
        samples = meta.get('samples', [])

        if target_class is not None:
            if target_class not in CLASS_ORDER:
                raise ValueError(f"Unknown class '{target_class}'")
            samples = [s for s in samples if s['target_class'] == target_class]
        if size_multiplier is not None:
            samples = [s for s in samples if s['size_multiplier'] == size_multiplier]

        # Train/val split
        if split_ratio < 1.0:
            rng = np.random.default_rng(seed)
            indices = rng.permutation(len(samples))
            split_idx = int(len(indices) * split_ratio)
            selected = indices[:split_idx] if is_train else indices[split_idx:]
            samples = [samples[i] for i in selected]

        self.samples: List[dict] = samples

    def __len__(self):
        return len(self.samples)

    def __getitem__(self, idx):
        sample = self.samples[idx]
        image, mask = load_balanced_sample(self.data_root, sample['name'])

        image = torch.from_numpy(np.ascontiguousarray(image, dtype=np.float32)).permute(2, 0, 1)
        mask = torch.from_numpy(np.ascontiguousarray(mask, dtype=np.float32)).permute(2, 0, 1)

        return {
            'image': image,
            'label': mask.argmax(dim=0).long(),
            'mask': mask,
            'name': sample['name'],
            'source_index': sample['source_index'],
            'target_class': sample['target_class'],
        }


def get_balanced_dataloaders(
    data_root: str,
    batch_size: int = 1,
    num_workers: int = 0,
    split_ratio: float = 0.9,
    seed: int = 42,
    size_multiplier: Optional[int] = None,
) -> Tuple[DataLoader, DataLoader]:
    """Get train and validation dataloaders over a saved balanced dataset."""
    train_dataset = BalancedAugmentedDataset(
        data_root=data_root,
        size_multiplier=size_multiplier,
        split_ratio=split_ratio,
        is_train=True,
        seed=seed,
    )
    val_dataset = BalancedAugmentedDataset(
        data_root=data_root,
        size_multiplier=size_multiplier,
        split_ratio=split_ratio,
        is_train=False,
        seed=seed,
    )

    train_loader = DataLoader(
        train_dataset,
        batch_size=batch_size,
        shuffle=True,
        num_workers=num_workers,
        drop_last=len(train_dataset) > batch_size,
    )
    val_loader = DataLoader(
        val_dataset,
        batch_size=batch_size,
        shuffle=False,
        num_workers=num_workers,
    )
    return train_loader, val_loader
