"""Infrastructure helpers: worker channel, shared assets, networking and responses."""

from .assets import OrderedMatrixProvider
from .channel import CorrelationChannel, uid
from .network import FETCHER, SourceFetcher, decode_image
from .responses import encode_png, event_to_json, send_png
from .worker import BLUE_NOISE_BROADCAST_ID, AssetWorker

__all__ = [
    "OrderedMatrixProvider",
    "CorrelationChannel",
    "uid",
    "FETCHER",
    "SourceFetcher",
    "decode_image",
    "encode_png",
    "event_to_json",
    "send_png",
    "BLUE_NOISE_BROADCAST_ID",
    "AssetWorker",
]
