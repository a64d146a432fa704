"""Numeric dithering components: image model, quantizers, kernels and the step catalogue."""

from .dither import error_diffusion, ordered_dither, random_dither
from .image import NormalizedImage, Pixel, Position, RawImage
from .kernels import FLOYD_STEINBERG, JARVIS_JUDICE_NINKE, KERNELS, SIMPLE_2D, DiffusionKernel
from .matrices import MatrixKey, MatrixKind, bayer_matrix, blue_noise_mask, compute_matrix
from .pipeline import (
    DitherPipeline,
    PipelineEvent,
    PipelineStep,
    StepKind,
    catalogue,
    color_catalogue,
    grayscale_catalogue,
)
from .quantize import even_palette_quantizer, threshold_quantizer

__all__ = [
    "error_diffusion",
    "ordered_dither",
    "random_dither",
    "NormalizedImage",
    "Pixel",
    "Position",
    "RawImage",
    "FLOYD_STEINBERG",
    "JARVIS_JUDICE_NINKE",
    "KERNELS",
    "SIMPLE_2D",
    "DiffusionKernel",
    "MatrixKey",
    "MatrixKind",
    "bayer_matrix",
    "blue_noise_mask",
    "compute_matrix",
    "DitherPipeline",
    "PipelineEvent",
    "PipelineStep",
    "StepKind",
    "catalogue",
    "color_catalogue",
    "grayscale_catalogue",
    "even_palette_quantizer",
    "threshold_quantizer",
]
