"""Request/response correlation over a worker's shared response stream."""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from typing import Any, Dict, Mapping, Optional, Protocol

from ..errors import AssetComputationError

log = logging.getLogger(__name__)

Message = Dict[str, Any]

_PREFIX = uuid.uuid4().hex[:8]
_COUNTER = itertools.count(1)


def uid() -> str:
    """Return a token that is unique for the lifetime of the process."""
    return f"{_PREFIX}{next(_COUNTER):x}"


class WorkerPort(Protocol):
    """Duplex endpoint of a worker: ``post`` in, ``responses`` out."""

    responses: "asyncio.Queue[Message]"

    def post(self, message: Mapping[str, Any]) -> None:
        ...


class CorrelationChannel:
    """Match responses to outstanding requests by their ``id`` field.

    Many requests may be in flight at once; responses may come back in any
    order. A response whose id has no pending entry is dropped.
    """

    def __init__(self, port: WorkerPort) -> None:
        self._port = port
        self._pending: Dict[str, asyncio.Future] = {}
        self._reader: Optional[asyncio.Task] = None

    @property
    def pending_ids(self) -> frozenset:
        return frozenset(self._pending)

    @property
    def running(self) -> bool:
        return self._reader is not None and not self._reader.done()

    def start(self) -> None:
        if self.running:
            return
        self._reader = asyncio.get_running_loop().create_task(self._pump())

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(
                    AssetComputationError(f"Channel closed before response {request_id} arrived")
                )
        self._pending.clear()

    def expect(self, request_id: str) -> asyncio.Future:
        """Register a pending entry for ``request_id`` without sending anything."""
        if request_id in self._pending:
            raise ValueError(f"Request id {request_id!r} is already pending")
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        future.add_done_callback(lambda _, rid=request_id: self._forget(rid, future))
        return future

    def send(self, payload: Mapping[str, Any], request_id: Optional[str] = None) -> asyncio.Future:
        request_id = request_id or uid()
        future = self.expect(request_id)
        self._port.post({**payload, "id": request_id})
        return future

    async def wait(
        self, request_id: str, future: asyncio.Future, timeout: Optional[float] = None
    ) -> Message:
        """Wait at most ``timeout`` seconds for the response pending under ``request_id``.

        On timeout the entry is dropped, so a late response is just unmatched.
        """
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            self._forget(request_id, future)
            raise AssetComputationError(
                f"No response to {request_id} within {timeout} seconds"
            ) from exc

    def _forget(self, request_id: str, future: asyncio.Future) -> None:
        if self._pending.get(request_id) is future:
            del self._pending[request_id]

    def _dispatch(self, message: Message) -> None:
        request_id = message.get("id")
        future = self._pending.pop(request_id, None) if request_id is not None else None
        if future is None or future.done():
            log.debug("Ignoring response with unmatched id %r", request_id)
            return
        if "error" in message:
            future.set_exception(AssetComputationError(str(message["error"])))
        else:
            future.set_result(message)

    async def _pump(self) -> None:
        while True:
            message = await self._port.responses.get()
            self._dispatch(message)
