"""Auxiliary worker that computes ordered-dither matrices off the event loop."""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Dict, Mapping, Optional, Set

from ..config import SETTINGS, DitherSettings
from ..processing.matrices import MatrixKind, compute_matrix
from .channel import Message

log = logging.getLogger(__name__)

BLUE_NOISE_BROADCAST_ID = "bluenoise"


class AssetWorker:
    """Serve ``{kind, level, id}`` requests with ``{id, result}`` or ``{id, error}``.

    Requests are read from :attr:`inbox` and every answer is put on the single
    :attr:`responses` queue in completion order.
    """

    def __init__(
        self,
        settings: DitherSettings = SETTINGS,
        executor: Optional[Executor] = None,
    ) -> None:
        self._settings = settings
        self._executor = executor
        self._owns_executor = executor is None
        self.inbox: "asyncio.Queue[Message]" = asyncio.Queue()
        self.responses: "asyncio.Queue[Message]" = asyncio.Queue()
        self._server: Optional[asyncio.Task] = None
        self._jobs: Set[asyncio.Task] = set()
        self.computed = 0

    def post(self, message: Mapping[str, Any]) -> None:
        self.inbox.put_nowait(dict(message))

    async def start(self, broadcast_blue_noise: bool = False) -> None:
        if self._server is not None:
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ditherlab-assets")
        loop = asyncio.get_running_loop()
        self._server = loop.create_task(self._serve())
        log.info("Asset worker started")
        if broadcast_blue_noise:
            self._spawn({"kind": MatrixKind.BLUE_NOISE.value, "level": 0, "id": BLUE_NOISE_BROADCAST_ID})

    async def stop(self) -> None:
        tasks = [t for t in (self._server, *self._jobs) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._server = None
        self._jobs.clear()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        log.info("Asset worker stopped")

    def _spawn(self, message: Message) -> None:
        task = asyncio.get_running_loop().create_task(self._handle(message))
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)

    async def _serve(self) -> None:
        while True:
            self._spawn(await self.inbox.get())

    def _compute(self, kind: str, level: int):
        return compute_matrix(
            kind,
            level,
            blue_noise_size=self._settings.blue_noise_size,
            blue_noise_sigma=self._settings.blue_noise_sigma,
            blue_noise_seed=self._settings.blue_noise_seed,
        )

    async def _handle(self, message: Message) -> None:
        request_id = message.get("id")
        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        try:
            kind = message["kind"]
            level = int(message.get("level", 0))
            result = await loop.run_in_executor(self._executor, self._compute, kind, level)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.exception("Asset request %s failed", request_id)
            reply: Dict[str, Any] = {"id": request_id, "error": f"{type(exc).__name__}: {exc}"}
        else:
            self.computed += 1
            log.info(
                "Computed %s level %s for %s in %.3fs",
                kind,
                level,
                request_id,
                time.perf_counter() - started,
            )
            reply = {"id": request_id, "result": result}
        await self.responses.put(reply)
