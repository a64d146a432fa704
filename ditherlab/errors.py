"""Error types raised by the dithering core."""


class DitherError(Exception):
    """Base class for failures that end a single job."""


class ConstructionError(DitherError, ValueError):
    """The input buffer does not describe a valid image."""


class AssetComputationError(DitherError, RuntimeError):
    """A shared ordered matrix could not be produced."""
