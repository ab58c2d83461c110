from __future__ import annotations

import pytest

from _synthetic import make_pair
from data.source_catalog import SourceImage, make_sources


@pytest.fixture
def sources() -> list[SourceImage]:
    return make_sources([make_pair(seed=i) for i in range(3)])


@pytest.fixture
def small_generator_kwargs() -> dict[str, object]:
    # Intermediate (48, 96) fits inside the 120x200 synthetic sources
    return {
        'total_length': 20,
        'target_distribution': {
            'scar': 20.0, 'redness': 20.0, 'hematoma': 20.0, 'necrosis': 20.0, 'background': 20.0,
        },
        'base_size': (10, 20),
        'max_multiplier': 2,
        'seed': 7,
        'show_progress': False,
    }
