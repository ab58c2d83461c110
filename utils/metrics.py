"""
Class-composition metrics and augmentation parameter statistics.
"""
import numpy as np
import torch

from configs.config import CLASS_ORDER


BACKGROUND_CHANNEL = CLASS_ORDER.index('background')


def _to_numpy(mask):
    if isinstance(mask, torch.Tensor):
        mask = mask.detach().cpu().numpy()
    return np.asarray(mask)


def class_percentage(mask, class_idx):
    """
    Calculate the percentage of pixels belonging to one class channel.

    Args:
        mask: Class-probability mask (H, W, C)
        class_idx: Channel index of the class

    Returns:
        Percentage (0-100) of probability mass in that channel
    """
    mask = _to_numpy(mask)
    total_pixels = mask.shape[0] * mask.shape[1]
    if total_pixels == 0:
        raise ValueError("Cannot compute class percentage of an empty mask")
    return float(mask[:, :, class_idx].sum(dtype=np.float64) / total_pixels * 100.0)


def class_percentages(mask):
    """Percentage of every class, keyed by class name."""
    return {name: class_percentage(mask, idx) for idx, name in enumerate(CLASS_ORDER)}


def foreground_percentage(mask):
    """
    Calculate percentage of foreground (non-background) pixels.

    Args:
        mask: Class-probability mask (H, W, C), background in the last channel

    Returns:
        Foreground percentage (0-100)
    """
    mask = _to_numpy(mask)
    total_pixels = mask.shape[0] * mask.shape[1]
    if total_pixels == 0:
        raise ValueError("Cannot compute foreground percentage of an empty mask")
    fg_pixels = mask[:, :, :BACKGROUND_CHANNEL].sum(dtype=np.float64)
    return float(fg_pixels / total_pixels * 100.0)


class ParameterTracker:
    """
    Track augmentation parameters over many generated samples.

    Continuous parameters are summarised by mean/std/min/max, categorical ones
    (flip type, blur kernel, target class) by counts.
    """
    CONTINUOUS = [
        'scale_factor', 'shear_x_angle', 'shear_y_angle', 'rotation_angle',
        'brightness_factor', 'saturation_offset', 'blur_sigma',
        'actual_fg_percentage',
    ]
    CATEGORICAL = ['flip_type', 'blur_kernel_size', 'target_class', 'size_multiplier']

    def __init__(self):
        self.reset()

    def reset(self):
        self.values = {p: [] for p in self.CONTINUOUS}
        self.counts = {p: {} for p in self.CATEGORICAL}

    def update(self, record):
        """Update with one metadata record (dict)."""
        for p in self.CONTINUOUS:
            if p in record:
                self.values[p].append(float(record[p]))
        for p in self.CATEGORICAL:
            if p in record:
                key = record[p]
                self.counts[p][key] = self.counts[p].get(key, 0) + 1

    def update_all(self, records):
        for record in records:
            self.update(record)
        return self

    def __len__(self):
        return len(self.values['scale_factor'])

    def get_statistics(self):
        """Get mean/std/min/max of every continuous parameter."""
        stats = {}
        for p, v in self.values.items():
            if v:
                stats[p] = {
                    'mean': float(np.mean(v)),
                    'std': float(np.std(v)),
                    'min': float(np.min(v)),
                    'max': float(np.max(v)),
                }
            else:
                stats[p] = {'mean': 0.0, 'std': 0.0, 'min': 0.0, 'max': 0.0}
        return stats

    def summary(self):
        """JSON-serialisable summary of all tracked parameters."""
        return {
            'num_samples': len(self),
            'continuous': self.get_statistics(),
            'categorical': {
                p: {str(k): c for k, c in sorted(counts.items(), key=lambda x: str(x[0]))}
                for p, counts in self.counts.items()
            },
        }


def print_parameter_summary(tracker):
    """Print a table of parameter statistics."""
    stats = tracker.get_statistics()
    total = max(1, len(tracker))

    print(f"\n{'='*60}")
    print("AUGMENTATION PARAMETERS")
    print(f"{'='*60}")
    print(f"{'Parameter':<24}{'Mean':>9}{'Std':>9}{'Min':>9}{'Max':>9}")
    for p, s in stats.items():
        print(f"{p:<24}{s['mean']:>9.3f}{s['std']:>9.3f}{s['min']:>9.3f}{s['max']:>9.3f}")

    for p, counts in tracker.counts.items():
        print(f"\n{p}:")
        for key, count in sorted(counts.items(), key=lambda x: str(x[0])):
            print(f"  {key}: {count} ({100 * count / total:.1f}%)")
