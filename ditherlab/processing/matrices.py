"""Threshold matrices for ordered dithering.

Both kinds are returned as single-channel :class:`NormalizedImage` grids in
[0, 1) and are meant to be sampled with wraparound.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from .image import NormalizedImage


class MatrixKind(str, Enum):
    BAYER = "bayer"
    BLUE_NOISE = "bluenoise"


@dataclass(frozen=True)
class MatrixKey:
    kind: MatrixKind
    level: int = 0

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.level}"


def bayer_matrix(level: int) -> NormalizedImage:
    """Return the ``2**(level + 1)`` square Bayer matrix.

    M(0) = [[0, 2], [3, 1]] and M(n) = [[4M+0, 4M+2], [4M+3, 4M+1]], divided
    by the number of cells.
    """
    if level < 0:
        raise ValueError(f"Bayer level must be non-negative, got {level}")
    m = np.array([[0, 2], [3, 1]], dtype=np.float64)
    for _ in range(level):
        m = np.block([[4 * m + 0, 4 * m + 2], [4 * m + 3, 4 * m + 1]])
    return NormalizedImage(m / m.size)


def _gaussian_lut(size: int, sigma: float) -> np.ndarray:
    distance = np.arange(size)
    distance = np.minimum(distance, size - distance)
    falloff = np.exp(-(distance.astype(np.float64) ** 2) / (2.0 * sigma * sigma))
    return np.outer(falloff, falloff)


def blue_noise_mask(
    size: int = 64, sigma: float = 1.5, seed: int = 0, initial_ratio: float = 0.1
) -> NormalizedImage:
    """Build a ``size`` x ``size`` void-and-cluster threshold mask.

    Energy is a Gaussian of every placed point on a torus, so the mask tiles
    without seams. The returned values are ranks divided by ``size ** 2``.
    """
    if size < 2:
        raise ValueError(f"Blue-noise mask needs at least 2x2 cells, got {size}")
    if sigma <= 0:
        raise ValueError(f"Blue-noise sigma must be positive, got {sigma}")

    rng = np.random.default_rng(seed)
    total = size * size
    lut = _gaussian_lut(size, sigma)

    def splat(energy: np.ndarray, index: int, sign: float) -> None:
        y, x = divmod(index, size)
        energy += sign * np.roll(lut, (y, x), axis=(0, 1))

    def tightest_cluster(pattern: np.ndarray, energy: np.ndarray) -> int:
        return int(np.argmax(np.where(pattern, energy, -np.inf)))

    def largest_void(pattern: np.ndarray, energy: np.ndarray) -> int:
        return int(np.argmin(np.where(pattern, np.inf, energy)))

    pattern = rng.random((size, size)) < initial_ratio
    if not pattern.any():
        pattern.flat[int(rng.integers(total))] = True
    energy = np.real(np.fft.ifft2(np.fft.fft2(pattern) * np.fft.fft2(lut)))

    # Move points from the tightest cluster into the largest void until stable.
    for _ in range(total):
        cluster = tightest_cluster(pattern, energy)
        pattern.flat[cluster] = False
        splat(energy, cluster, -1.0)
        void = largest_void(pattern, energy)
        pattern.flat[void] = True
        splat(energy, void, 1.0)
        if void == cluster:
            break

    ranks = np.zeros(total, dtype=np.float64)
    ones = int(pattern.sum())

    remaining, remaining_energy = pattern.copy(), energy.copy()
    for rank in range(ones - 1, -1, -1):
        cluster = tightest_cluster(remaining, remaining_energy)
        remaining.flat[cluster] = False
        splat(remaining_energy, cluster, -1.0)
        ranks[cluster] = rank

    filled, filled_energy = pattern.copy(), energy.copy()
    for rank in range(ones, total):
        void = largest_void(filled, filled_energy)
        filled.flat[void] = True
        splat(filled_energy, void, 1.0)
        ranks[void] = rank

    return NormalizedImage(ranks.reshape(size, size) / total)


def compute_matrix(
    kind: MatrixKind | str,
    level: int = 0,
    *,
    blue_noise_size: int = 64,
    blue_noise_sigma: float = 1.5,
    blue_noise_seed: int = 0,
) -> NormalizedImage:
    kind = MatrixKind(kind)
    if kind is MatrixKind.BAYER:
        return bayer_matrix(level)
    return blue_noise_mask(blue_noise_size, blue_noise_sigma, blue_noise_seed)
