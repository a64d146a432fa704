from __future__ import annotations

from typing import Callable

import numpy as np

Quantizer = Callable[[np.ndarray], np.ndarray]


def threshold_quantizer(threshold: float = 0.5) -> Quantizer:
    """Binary quantizer: 1.0 strictly above ``threshold``, 0.0 otherwise."""

    def quantize(values):
        return np.where(np.asarray(values) > threshold, 1.0, 0.0).astype(np.float32)

    return quantize


def even_palette_quantizer(levels_per_axis: int) -> Quantizer:
    """Snap every channel to the nearest of ``levels_per_axis`` evenly spaced levels.

    Applied to an RGB sample this yields ``levels_per_axis ** 3`` colors. Ties
    between two levels round up, except with two levels where the midpoint
    goes down exactly like :func:`threshold_quantizer`.
    """
    steps = int(min(255, max(2, levels_per_axis))) - 1
    if steps == 1:
        return threshold_quantizer()

    def quantize(values):
        snapped = np.floor(np.asarray(values, dtype=np.float32) * steps + 0.5) / steps
        return np.clip(snapped, 0.0, 1.0).astype(np.float32)

    return quantize
