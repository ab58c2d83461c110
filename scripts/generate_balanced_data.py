"""
Generate a Class-Balanced Augmented Wound Dataset

Expands a small set of annotated wound images into a larger dataset whose
samples are balanced over the wound classes (scar, redness, hematoma,
necrosis, background).

Pipeline per sample:
1. Select a source image weighted by how much of the target class it contains
2. Sample every augmentation parameter up front from one seed
3. Smart-crop a large intermediate region around the target class
4. Apply scale / shear / rotation / flip once, then grow the final patch
   (base size x 1, x 2, ...) until the class stops dominating the patch
5. Elastic distortion on image and mask, colour jitter and blur on the image
6. Reject samples that lost too much of the target class

Every sample records its seed, so any sample can be regenerated exactly.

Usage:
    python scripts/generate_balanced_data.py \
        --data_root ./dataset/sources \
        --output_dir ./dataset/augmented_balanced \
        --total_length 1000

    # Custom distribution, exclude sources, run on 8 workers
    python scripts/generate_balanced_data.py \
        --data_root ./dataset/sources \
        --output_dir ./dataset/augmented_balanced \
        --total_length 5000 \
        --distribution scar=20 redness=20 hematoma=20 necrosis=10 background=30 \
        --exclude 3 17 \
        --num_workers 8
"""

import argparse
import logging
import os
import sys
import time

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from configs.config import CLASS_ORDER, get_config, validate_augment_config
from data.balanced_generator import BalancedDatasetGenerator
from data.balanced_io import load_source_pairs, save_balanced_dataset
from data.source_catalog import analyze_source_classes, summarize_source_classes
from utils.metrics import ParameterTracker, print_parameter_summary


def parse_distribution(items):
    """Parse ['scar=20', 'background=80'] into {'scar': 20.0, 'background': 80.0}."""
    distribution = {}
    for item in items:
        if '=' not in item:
            raise argparse.ArgumentTypeError(f"Expected class=percent, got '{item}'")
        name, value = item.split('=', 1)
        distribution[name.strip()] = float(value)
    return distribution


def build_config(args):
    """Apply command line overrides to the default configuration."""
    config = get_config()
    augment = config.augment

    if args.total_length is not None:
        augment.total_length = args.total_length
    if args.seed is not None:
        augment.seed = args.seed
    if args.num_workers is not None:
        augment.num_workers = args.num_workers
    if args.max_multiplier is not None:
        augment.max_multiplier = args.max_multiplier
    if args.base_size is not None:
        augment.base_size = tuple(args.base_size)
    if args.exclude:
        augment.excluded_indices = tuple(args.exclude)
    if args.distribution:
        augment.target_distribution = parse_distribution(args.distribution)

    config.io.data_root = args.data_root
    config.io.output_dir = args.output_dir

    validate_augment_config(augment)
    return config


def generate_balanced_dataset(config, show_progress=True):
    """
    Load sources, generate the balanced dataset and save it.

    Returns:
        (BalancedDataset, metadata_path)
    """
    io = config.io
    augment = config.augment

    sources = load_source_pairs(io.data_root, io.image_dir, io.mask_dir)
    if len(sources) == 0:
        raise FileNotFoundError(f"No source images found in {io.data_root}")

    print(f"\nAnalyzing {len(sources)} source images...")
    source_info = analyze_source_classes(sources)

    print("Mean class composition of sources:")
    for name, pct in summarize_source_classes(source_info).items():
        print(f"  {name:<12}{pct:6.2f}%")

    generator = BalancedDatasetGenerator.from_config(
        sources, augment, source_info=source_info, show_progress=show_progress
    )

    start_time = time.time()
    dataset = generator.generate()
    elapsed_time = time.time() - start_time

    print(f"\nGeneration completed in {elapsed_time:.1f} seconds")
    if elapsed_time > 0:
        print(f"Speed: {len(dataset) / elapsed_time:.1f} samples/second")

    metadata_path = save_balanced_dataset(
        dataset, io.output_dir, config=config,
        image_dir=io.image_dir, mask_dir=io.mask_dir, metadata_file=io.metadata_file,
    )
    return dataset, metadata_path


def print_run_summary(dataset):
    summary = dataset.run.summary()

    print(f"\n{'='*60}")
    print("BALANCED AUGMENTATION SUMMARY")
    print(f"{'='*60}")

    print(f"\nTotal samples generated: {summary['total_samples']}")
    print(f"Total attempts: {summary['total_attempts']}")
    print(f"Rejection rate: {summary['rejection_rate']:.2f}%")

    print(f"\n{'Class':<12}{'Produced':>10}{'Target':>10}{'Attempts':>10}"
          f"{'Quality':>10}{'Errors':>10}")
    for cls in summary['target_counts']:
        print(f"{cls:<12}{summary['counts'][cls]:>10d}{summary['target_counts'][cls]:>10d}"
              f"{summary['attempts'][cls]:>10d}{summary['quality_rejections'][cls]:>10d}"
              f"{summary['transform_errors'][cls]:>10d}")

    print("\nMean pixel distribution of generated samples:")
    for cls in CLASS_ORDER:
        print(f"  {cls:<12}{summary['mean_pixel_distribution'][cls]:6.2f}%")

    if summary['under_filled_classes']:
        print(f"\nWARNING: under-filled classes: {', '.join(summary['under_filled_classes'])}")


def main():
    parser = argparse.ArgumentParser(description='Generate class-balanced augmented wound data')

    parser.add_argument('--data_root', type=str, default='./dataset/sources',
                        help='Directory containing images/ and masks/ of the source pairs')
    parser.add_argument('--output_dir', type=str, default='./dataset/augmented_balanced',
                        help='Output directory for augmented data')
    parser.add_argument('--total_length', type=int, default=None,
                        help='Number of samples to generate (default: 1000)')
    parser.add_argument('--distribution', type=str, nargs='+', default=None,
                        help='Target distribution as class=percent pairs summing to 100')
    parser.add_argument('--base_size', type=int, nargs=2, default=None,
                        metavar=('HEIGHT', 'WIDTH'),
                        help='Patch size at multiplier 1 (default: 50 100)')
    parser.add_argument('--max_multiplier', type=int, default=None,
                        help='Largest growth multiplier (default: 4)')
    parser.add_argument('--exclude', type=int, nargs='+', default=None,
                        help='Source indices never used for generation')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed (default: 42)')
    parser.add_argument('--num_workers', type=int, default=None,
                        help='Number of parallel workers (default: 0, sequential)')
    parser.add_argument('--no_progress', action='store_true',
                        help='Disable progress bars')

    args = parser.parse_args()

    os.makedirs(args.output_dir, exist_ok=True)

    # Setup logging
    logging.basicConfig(
        filename=os.path.join(args.output_dir, 'generate.log'),
        level=logging.INFO,
        format='[%(asctime)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logging.getLogger().addHandler(logging.StreamHandler(sys.stdout))
    logging.info(f'Arguments: {args}')

    config = build_config(args)

    print(f"Generating balanced dataset from: {config.io.data_root}")
    print(f"Target samples: {config.augment.total_length}")
    print(f"Output directory: {config.io.output_dir}")
    print(f"Workers: {config.augment.num_workers or 'sequential'}")

    dataset, metadata_path = generate_balanced_dataset(config, show_progress=not args.no_progress)

    print_run_summary(dataset)
    print_parameter_summary(ParameterTracker().update_all(dataset.metadata))

    print(f"\nMetadata saved to: {metadata_path}")
    print(f"Output directory: {config.io.output_dir}")


if __name__ == '__main__':
    main()
