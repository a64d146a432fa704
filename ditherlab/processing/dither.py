from __future__ import annotations

from typing import Optional

import numpy as np

from .image import NormalizedImage
from .kernels import DiffusionKernel
from .quantize import Quantizer


def bias(values: np.ndarray, levels_per_axis: int) -> np.ndarray:
    """Remap [0, 1] noise or thresholds onto one quantization step centred on zero."""
    return values * (2.0 / levels_per_axis) - 1.0 / levels_per_axis


def error_diffusion(
    img: NormalizedImage, kernel: DiffusionKernel, quantize: Quantizer
) -> NormalizedImage:
    """Quantize ``img`` in place, pushing each pixel's error onto later pixels.

    Pixels are visited top to bottom, left to right. Error that would land
    outside the image is dropped. Neighbours accumulate error unclamped; each
    one is brought back into [0, 1] by ``quantize`` when its turn comes.
    """
    weights = kernel.normalized().as_array()
    anchor = kernel.anchor
    kernel_height, kernel_width = weights.shape
    samples = img.samples
    height, width, _ = samples.shape

    for y in range(height):
        rows = min(kernel_height, height - y)
        for x in range(width):
            original = samples[y, x].copy()
            quantized = quantize(original)
            samples[y, x] = quantized
            error = original - quantized

            left = x - anchor
            lo = max(0, left)
            hi = min(width, left + kernel_width)
            spread = weights[:rows, lo - left : hi - left, np.newaxis] * error
            samples[y : y + rows, lo:hi] += spread
    return img


def random_dither(
    img: NormalizedImage,
    quantize: Quantizer,
    levels_per_axis: int = 2,
    rng: Optional[np.random.Generator] = None,
) -> NormalizedImage:
    rng = rng or np.random.default_rng()
    return img.self_apply(
        lambda samples: quantize(samples + bias(rng.random(samples.shape), levels_per_axis))
    )


def ordered_dither(
    img: NormalizedImage,
    matrix: NormalizedImage,
    quantize: Quantizer,
    levels_per_axis: int = 2,
) -> NormalizedImage:
    """Bias every sample by ``matrix`` sampled with wraparound, then quantize."""
    thresholds = matrix.wrapped_plane(img.width, img.height)[:, :, np.newaxis]
    offsets = bias(thresholds, levels_per_axis)
    return img.self_apply(lambda samples: quantize(samples + offsets))
