from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator, NamedTuple, Sequence

import numpy as np
from PIL import Image

from ..errors import ConstructionError

SUPPORTED_CHANNELS = (1, 3)

# ITU-R BT.601 luma weights, the same ones Pillow uses for ``convert("L")``.
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)


class Position(NamedTuple):
    x: int
    y: int
    i: int


class Pixel(NamedTuple):
    x: int
    y: int
    pixel: np.ndarray


SampleFn = Callable[[float, Position], float]
PixelFn = Callable[[np.ndarray, Position], Sequence[float]]


def _mode_for(channels: int) -> str:
    if channels == 1:
        return "L"
    if channels == 3:
        return "RGB"
    raise ConstructionError(f"Unsupported channel count: {channels}")


@dataclass(frozen=True)
class RawImage:
    """Interleaved 8-bit pixels exchanged with collaborators."""

    width: int
    height: int
    pixels: bytes
    channels: int = 3

    @classmethod
    def from_image(cls, img: Image.Image, channels: int = 3) -> "RawImage":
        converted = img.convert(_mode_for(channels))
        return cls(converted.width, converted.height, converted.tobytes(), channels)

    def to_image(self) -> Image.Image:
        return Image.frombytes(_mode_for(self.channels), (self.width, self.height), self.pixels)


class NormalizedImage:
    """Row-major grid of float32 samples clamped to [0, 1].

    ``samples`` has shape ``(height, width, channels)``. Every write that goes
    through the public API is clamped; :func:`~ditherlab.processing.dither.error_diffusion`
    is the one caller that accumulates into ``samples`` directly and relies on
    its quantizer to bring each visited sample back into range.
    """

    def __init__(self, samples: np.ndarray) -> None:
        array = np.array(samples, dtype=np.float32)
        if array.ndim == 2:
            array = array[:, :, np.newaxis]
        if array.ndim != 3 or array.shape[2] not in SUPPORTED_CHANNELS:
            raise ConstructionError(f"Unsupported sample shape: {array.shape}")
        if array.shape[0] == 0 or array.shape[1] == 0:
            raise ConstructionError("Image has no pixels")
        self.samples = np.clip(array, 0.0, 1.0)

    # -- construction -------------------------------------------------

    @classmethod
    def from_flat(
        cls, values: Sequence[float], width: int, height: int, channels: int = 1
    ) -> "NormalizedImage":
        array = np.asarray(values, dtype=np.float32)
        if width <= 0 or height <= 0 or array.size != width * height * channels:
            raise ConstructionError(
                f"{array.size} samples do not fit {width}x{height}x{channels}"
            )
        return cls(array.reshape(height, width, channels))

    @classmethod
    def from_bytes(
        cls, data: bytes, width: int, height: int, channels: int = 3
    ) -> "NormalizedImage":
        if channels not in SUPPORTED_CHANNELS:
            raise ConstructionError(f"Unsupported channel count: {channels}")
        if width <= 0 or height <= 0:
            raise ConstructionError(f"Invalid image size {width}x{height}")
        if len(data) != width * height * channels:
            raise ConstructionError(
                f"Buffer of {len(data)} bytes does not match {width}x{height}x{channels}"
            )
        array = np.frombuffer(data, dtype=np.uint8).reshape(height, width, channels)
        return cls(array.astype(np.float32) / 255.0)

    @classmethod
    def from_raw(cls, raw: RawImage) -> "NormalizedImage":
        return cls.from_bytes(raw.pixels, raw.width, raw.height, raw.channels)

    @classmethod
    def from_image(cls, img: Image.Image, channels: int = 3) -> "NormalizedImage":
        return cls.from_raw(RawImage.from_image(img, channels))

    # -- shape ----------------------------------------------------------

    @property
    def width(self) -> int:
        return self.samples.shape[1]

    @property
    def height(self) -> int:
        return self.samples.shape[0]

    @property
    def channels(self) -> int:
        return self.samples.shape[2]

    def __repr__(self) -> str:
        return f"NormalizedImage({self.width}x{self.height}x{self.channels})"

    # -- conversion -----------------------------------------------------

    def to_bytes(self) -> bytes:
        scaled = np.rint(self.samples * 255.0)
        return np.clip(scaled, 0, 255).astype(np.uint8).tobytes()

    def to_raw(self) -> RawImage:
        return RawImage(self.width, self.height, self.to_bytes(), self.channels)

    def to_image(self) -> Image.Image:
        return self.to_raw().to_image()

    def grayscale(self) -> "NormalizedImage":
        if self.channels == 1:
            return self.copy()
        return NormalizedImage(self.samples @ LUMA_WEIGHTS)

    def copy(self) -> "NormalizedImage":
        return NormalizedImage(self.samples)

    # -- point access ---------------------------------------------------

    def is_in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def _checked(self, x: int, y: int) -> None:
        if not self.is_in_bounds(x, y):
            raise IndexError(f"({x}, {y}) is outside {self.width}x{self.height}")

    def pixel_at(self, x: int, y: int) -> np.ndarray:
        """Return a mutable view on the channels of pixel ``(x, y)``."""
        self._checked(x, y)
        return self.samples[y, x]

    def set_pixel(self, x: int, y: int, values: Sequence[float]) -> None:
        self._checked(x, y)
        self.samples[y, x] = np.clip(np.asarray(values, dtype=np.float32), 0.0, 1.0)

    def value_at(self, x: int, y: int, *, wrap: bool = False, channel: int = 0) -> float:
        if wrap:
            x %= self.width
            y %= self.height
        else:
            self._checked(x, y)
        return float(self.samples[y, x, channel])

    def wrapped_plane(self, width: int, height: int, channel: int = 0) -> np.ndarray:
        """Tile one channel over a ``height`` x ``width`` grid using ``(x mod w, y mod h)``."""
        rows = np.arange(height) % self.height
        cols = np.arange(width) % self.width
        return self.samples[:, :, channel][np.ix_(rows, cols)]

    def all_pixels(self) -> Iterator[Pixel]:
        for y in range(self.height):
            for x in range(self.width):
                yield Pixel(x, y, self.samples[y, x])

    # -- bulk transforms -----------------------------------------------

    def self_map(self, fn: SampleFn) -> "NormalizedImage":
        """Replace every sample with ``fn(value, Position(x, y, i))``.

        ``i`` is the flat index of the sample in row-major interleaved order.
        """
        channels = self.channels
        for (y, x, c), value in np.ndenumerate(self.samples):
            i = (y * self.width + x) * channels + c
            self.samples[y, x, c] = fn(float(value), Position(x, y, i))
        np.clip(self.samples, 0.0, 1.0, out=self.samples)
        return self

    def map(self, fn: SampleFn) -> "NormalizedImage":
        return self.copy().self_map(fn)

    def self_map_pixels(self, fn: PixelFn) -> "NormalizedImage":
        """Replace every pixel with ``fn(channels, Position(x, y, i))``; ``i`` is the pixel index."""
        for x, y, pixel in self.all_pixels():
            self.set_pixel(x, y, fn(pixel.copy(), Position(x, y, y * self.width + x)))
        return self

    def map_pixels(self, fn: PixelFn) -> "NormalizedImage":
        return self.copy().self_map_pixels(fn)

    def self_apply(self, fn: Callable[[np.ndarray], np.ndarray]) -> "NormalizedImage":
        """Vectorised variant of :meth:`self_map` operating on the whole sample array."""
        result = np.asarray(fn(self.samples), dtype=np.float32)
        if result.shape != self.samples.shape:
            raise ValueError(f"Transform changed shape {self.samples.shape} -> {result.shape}")
        self.samples = np.clip(result, 0.0, 1.0)
        return self
