from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, Optional

from ..errors import AssetComputationError
from ..processing.image import NormalizedImage
from ..processing.matrices import MatrixKey, MatrixKind
from .channel import CorrelationChannel, uid
from .worker import BLUE_NOISE_BROADCAST_ID

log = logging.getLogger(__name__)


class OrderedMatrixProvider:
    """Compute every ordered matrix once and share it with all consumers.

    The cache maps :class:`MatrixKey` to the future of its matrix. It is only
    touched from the event loop that owns the channel, so it needs no lock.
    Failed entries are evicted so that a later job can ask again.
    """

    def __init__(self, channel: CorrelationChannel, timeout: Optional[float] = None) -> None:
        self._channel = channel
        self._timeout = timeout
        self._cache: Dict[MatrixKey, asyncio.Future] = {}
        self.requests_sent = 0

    @property
    def cached_keys(self) -> list:
        return sorted(str(key) for key in self._cache)

    def prime(self) -> None:
        """Accept the blue-noise mask the worker broadcasts at startup."""
        key = MatrixKey(MatrixKind.BLUE_NOISE)
        if key in self._cache:
            return
        response = self._channel.expect(BLUE_NOISE_BROADCAST_ID)
        self._store(key, asyncio.ensure_future(self._unwrap(key, BLUE_NOISE_BROADCAST_ID, response)))

    def warm(self, bayer_levels: Iterable[int], scope: Optional[str] = None) -> None:
        for level in bayer_levels:
            self.matrix(MatrixKind.BAYER, level, scope=scope)

    def matrix(
        self, kind: MatrixKind, level: int = 0, scope: Optional[str] = None
    ) -> asyncio.Future:
        """Return the shared future for ``(kind, level)``, requesting it on first use."""
        key = MatrixKey(MatrixKind(kind), level)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        request_id = f"{scope or uid()}-{key}"
        response = self._channel.send({"kind": key.kind.value, "level": level}, request_id)
        self.requests_sent += 1
        log.debug("Requested %s as %s", key, request_id)
        return self._store(key, asyncio.ensure_future(self._unwrap(key, request_id, response)))

    async def get(
        self, kind: MatrixKind, level: int = 0, scope: Optional[str] = None
    ) -> NormalizedImage:
        # Shielded so a cancelled job never cancels a computation others share.
        return await asyncio.shield(self.matrix(kind, level, scope=scope))

    async def bayer(self, level: int, scope: Optional[str] = None) -> NormalizedImage:
        return await self.get(MatrixKind.BAYER, level, scope)

    async def blue_noise(self, scope: Optional[str] = None) -> NormalizedImage:
        return await self.get(MatrixKind.BLUE_NOISE, 0, scope)

    def _store(self, key: MatrixKey, future: asyncio.Future) -> asyncio.Future:
        self._cache[key] = future
        future.add_done_callback(lambda done: self._evict_failed(key, done))
        return future

    def _evict_failed(self, key: MatrixKey, future: asyncio.Future) -> None:
        if not future.cancelled() and future.exception() is None:
            return
        if self._cache.get(key) is future:
            del self._cache[key]
            log.warning("Evicted failed asset %s", key)

    async def _unwrap(
        self, key: MatrixKey, request_id: str, response: asyncio.Future
    ) -> NormalizedImage:
        message = await self._channel.wait(request_id, response, self._timeout)
        result = message.get("result")
        if not isinstance(result, NormalizedImage):
            raise AssetComputationError(f"Worker answered {key} without a matrix")
        return result
