"""Image dithering pipeline with shared ordered-matrix assets."""

from .app import APP_VERSION, create_app
from . import infrastructure, processing
from .errors import AssetComputationError, ConstructionError, DitherError
from .service import DitherService, ServiceRunner

__version__ = APP_VERSION

__all__ = [
    "APP_VERSION",
    "__version__",
    "create_app",
    "infrastructure",
    "processing",
    "AssetComputationError",
    "ConstructionError",
    "DitherError",
    "DitherService",
    "ServiceRunner",
]
