from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol, Sequence, Tuple

import numpy as np

from ..config import SETTINGS, DitherSettings
from ..errors import ConstructionError
from .dither import error_diffusion, ordered_dither, random_dither
from .image import NormalizedImage, RawImage
from .kernels import FLOYD_STEINBERG, JARVIS_JUDICE_NINKE, SIMPLE_2D, DiffusionKernel
from .matrices import MatrixKey, MatrixKind
from .quantize import Quantizer, even_palette_quantizer, threshold_quantizer

GRAY = "gray"
COLOR = "color"
MODES = (GRAY, COLOR)


class StepKind(str, Enum):
    QUANTIZED = "quantized"
    RANDOM = "random"
    ORDERED = "ordered"
    DIFFUSION = "diffusion"


class AssetSource(Protocol):
    async def get(
        self, kind: MatrixKind, level: int = 0, scope: Optional[str] = None
    ) -> NormalizedImage:
        ...


@dataclass(frozen=True)
class PipelineStep:
    """One entry of a dithering catalogue.

    ``levels`` is the number of levels per channel for the even palette
    quantizer; ``None`` selects the binary threshold quantizer.
    """

    id: str
    kind: StepKind
    label: str
    levels: Optional[int] = None
    kernel: Optional[DiffusionKernel] = None
    matrix: Optional[MatrixKey] = None

    def __post_init__(self) -> None:
        if self.kind is StepKind.ORDERED and self.matrix is None:
            raise ValueError(f"Ordered step {self.id!r} needs a matrix")
        if self.kind is StepKind.DIFFUSION and self.kernel is None:
            raise ValueError(f"Diffusion step {self.id!r} needs a kernel")

    @property
    def colors(self) -> Optional[int]:
        return None if self.levels is None else self.levels**3

    @property
    def title(self) -> str:
        if self.levels is None:
            return self.label
        return f"{self.label} ({self.colors} colors)"

    @property
    def levels_per_axis(self) -> int:
        return self.levels or 2

    def quantizer(self) -> Quantizer:
        if self.levels is None:
            return threshold_quantizer()
        return even_palette_quantizer(self.levels)

    async def process(
        self,
        img: NormalizedImage,
        assets: AssetSource,
        scope: Optional[str] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> NormalizedImage:
        """Return a new image; ``img`` and the shared assets are left untouched.

        The pixel work runs in a thread so the event loop keeps serving other
        jobs and asset responses meanwhile.
        """
        matrix = None
        if self.kind is StepKind.ORDERED:
            matrix = await assets.get(self.matrix.kind, self.matrix.level, scope)
        return await asyncio.to_thread(self.apply, img, matrix, rng)

    def apply(
        self,
        img: NormalizedImage,
        matrix: Optional[NormalizedImage] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> NormalizedImage:
        quantize = self.quantizer()
        if self.kind is StepKind.QUANTIZED:
            return img.copy().self_apply(quantize)
        if self.kind is StepKind.RANDOM:
            return random_dither(img.copy(), quantize, self.levels_per_axis, rng)
        if self.kind is StepKind.ORDERED:
            if matrix is None:
                raise ValueError(f"Ordered step {self.id!r} needs its matrix")
            return ordered_dither(img.copy(), matrix, quantize, self.levels_per_axis)
        return error_diffusion(img.copy(), self.kernel, quantize)


def grayscale_catalogue(bayer_levels: int = 4) -> Tuple[PipelineStep, ...]:
    return (
        PipelineStep("quantized", StepKind.QUANTIZED, "Quantized"),
        PipelineStep("random", StepKind.RANDOM, "Dithering"),
        *(
            PipelineStep(
                f"bayer-{level}",
                StepKind.ORDERED,
                f"Bayer Level {level + 1}",
                matrix=MatrixKey(MatrixKind.BAYER, level),
            )
            for level in range(bayer_levels)
        ),
        PipelineStep(
            "bluenoise", StepKind.ORDERED, "Blue Noise", matrix=MatrixKey(MatrixKind.BLUE_NOISE)
        ),
        PipelineStep("2derrdiff", StepKind.DIFFUSION, "Simple Error Diffusion", kernel=SIMPLE_2D),
        PipelineStep(
            "floydsteinberg",
            StepKind.DIFFUSION,
            "Floyd-Steinberg Diffusion",
            kernel=FLOYD_STEINBERG,
        ),
        PipelineStep(
            "jjn",
            StepKind.DIFFUSION,
            "Jarvis-Judice-Ninke Diffusion",
            kernel=JARVIS_JUDICE_NINKE,
        ),
    )


def color_catalogue(palette_count: int = 3) -> Tuple[PipelineStep, ...]:
    steps = []
    for levels in range(2, palette_count + 2):
        n = levels**3
        steps += [
            PipelineStep(f"quantized:{n}", StepKind.QUANTIZED, "Quantized", levels),
            PipelineStep(f"dither:{n}", StepKind.RANDOM, "Dithering", levels),
            PipelineStep(
                f"bayer1:{n}",
                StepKind.ORDERED,
                "Bayer Level 1",
                levels,
                matrix=MatrixKey(MatrixKind.BAYER, 1),
            ),
            PipelineStep(
                f"bayer3:{n}",
                StepKind.ORDERED,
                "Bayer Level 3",
                levels,
                matrix=MatrixKey(MatrixKind.BAYER, 3),
            ),
            PipelineStep(
                f"2ded:{n}", StepKind.DIFFUSION, "Simple Error Diffusion", levels, kernel=SIMPLE_2D
            ),
            PipelineStep(
                f"fsed:{n}",
                StepKind.DIFFUSION,
                "Floyd-Steinberg Error Diffusion",
                levels,
                kernel=FLOYD_STEINBERG,
            ),
            PipelineStep(
                f"jjned:{n}",
                StepKind.DIFFUSION,
                "Jarvis-Judice-Ninke Error Diffusion",
                levels,
                kernel=JARVIS_JUDICE_NINKE,
            ),
            PipelineStep(
                f"bluenoise:{n}",
                StepKind.ORDERED,
                "Blue Noise",
                levels,
                matrix=MatrixKey(MatrixKind.BLUE_NOISE),
            ),
        ]
    return tuple(steps)


def catalogue(mode: str, settings: DitherSettings = SETTINGS) -> Tuple[PipelineStep, ...]:
    if mode == GRAY:
        return grayscale_catalogue(settings.bayer_levels)
    if mode == COLOR:
        return color_catalogue(settings.palette_count)
    raise ValueError(f"Unknown pipeline mode: {mode!r}")


@dataclass(frozen=True)
class PipelineEvent:
    type: str
    job: str
    id: str
    title: str
    image: Optional[RawImage] = None
    message: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "job": self.job, "id": self.id, "title": self.title}
        if self.image is not None:
            payload["imageData"] = self.image
        if self.message is not None:
            payload["message"] = self.message
        return payload


StepListener = Callable[[str, int], None]


class DitherPipeline:
    """Run a fixed catalogue over one source image and stream the results.

    Steps run one after another in catalogue order. A step waiting on a
    shared matrix suspends only its own job.
    """

    def __init__(
        self,
        steps: Sequence[PipelineStep],
        assets: AssetSource,
        *,
        mode: str = GRAY,
        announce_steps: Optional[bool] = None,
        max_pixels: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if mode not in MODES:
            raise ValueError(f"Unknown pipeline mode: {mode!r}")
        self.mode = mode
        self.steps = tuple(steps)
        self.assets = assets
        self.announce_steps = mode == COLOR if announce_steps is None else announce_steps
        self.max_pixels = max_pixels
        self._rng = rng

    @classmethod
    def for_mode(
        cls, mode: str, assets: AssetSource, settings: DitherSettings = SETTINGS
    ) -> "DitherPipeline":
        return cls(catalogue(mode, settings), assets, mode=mode, max_pixels=settings.max_pixels)

    def prepare(self, source: RawImage) -> NormalizedImage:
        if self.max_pixels is not None and source.width * source.height > self.max_pixels:
            raise ConstructionError(
                f"{source.width}x{source.height} exceeds the {self.max_pixels} pixel limit"
            )
        img = NormalizedImage.from_raw(source)
        if self.mode == GRAY:
            return img.grayscale()
        if img.channels == 1:
            return NormalizedImage(np.repeat(img.samples, 3, axis=2))
        return img

    async def run(
        self,
        source: RawImage,
        job_id: str,
        on_step: Optional[StepListener] = None,
    ) -> AsyncIterator[PipelineEvent]:
        working = self.prepare(source)
        yield PipelineEvent("result", job_id, "original", "Original", source)
        if self.mode == GRAY:
            yield PipelineEvent("result", job_id, "grayscale", "Grayscale", working.to_raw())

        for index, step in enumerate(self.steps):
            if on_step is not None:
                on_step(job_id, index)
            if self.announce_steps:
                yield PipelineEvent("started", job_id, step.id, step.title)
            result = await step.process(working, self.assets, scope=job_id, rng=self._rng)
            yield PipelineEvent("result", job_id, step.id, step.title, result.to_raw())
            # Let responses and other jobs through between steps.
            await asyncio.sleep(0)
