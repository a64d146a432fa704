from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Tuple

import numpy as np


@dataclass(frozen=True)
class DiffusionKernel:
    """Weights spreading quantization error onto pixels not yet visited.

    Row 0 holds the current pixel at column :attr:`anchor`; cells left of it
    in row 0 belong to pixels that were already quantized and must be zero.
    """

    name: str
    width: int
    height: int
    weights: Tuple[float, ...]

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid kernel size {self.width}x{self.height}")
        if len(self.weights) != self.width * self.height:
            raise ValueError(
                f"{self.name}: {len(self.weights)} weights do not fit {self.width}x{self.height}"
            )

    @property
    def anchor(self) -> int:
        return (self.width - 1) // 2

    def normalized(self) -> "DiffusionKernel":
        """Return a copy whose non-anchor weights sum to 1."""
        weights = list(self.weights)
        weights[self.anchor] = 0.0
        total = float(sum(weights))
        if total <= 0:
            raise ValueError(f"{self.name}: kernel has no positive weight to spread")
        return DiffusionKernel(
            self.name, self.width, self.height, tuple(w / total for w in weights)
        )

    def as_array(self) -> np.ndarray:
        return np.asarray(self.weights, dtype=np.float32).reshape(self.height, self.width)

    def offsets(self) -> Iterator[Tuple[int, int, float]]:
        """Yield ``(dx, dy, weight)`` for every non-zero cell relative to the current pixel."""
        for index, weight in enumerate(self.weights):
            if weight == 0:
                continue
            dy, column = divmod(index, self.width)
            yield column - self.anchor, dy, weight


SIMPLE_2D = DiffusionKernel("simple", 2, 2, (0, 1, 1, 0))

FLOYD_STEINBERG = DiffusionKernel("floyd-steinberg", 3, 2, (0, 0, 7, 1, 5, 3))

JARVIS_JUDICE_NINKE = DiffusionKernel(
    "jarvis-judice-ninke",
    5,
    3,
    (0, 0, 0, 7, 5, 3, 5, 7, 5, 3, 1, 3, 5, 3, 1),
)

KERNELS: Dict[str, DiffusionKernel] = {
    kernel.name: kernel for kernel in (SIMPLE_2D, FLOYD_STEINBERG, JARVIS_JUDICE_NINKE)
}
