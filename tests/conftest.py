import dataclasses

import pytest

from ditherlab.config import SETTINGS


@pytest.fixture
def settings():
    return dataclasses.replace(
        SETTINGS,
        source_url="",
        bayer_levels=4,
        palette_count=3,
        blue_noise_size=8,
        blue_noise_sigma=1.5,
        blue_noise_seed=0,
        asset_timeout=30.0,
        precompute_assets=True,
        max_pixels=10_000,
    )
