"""Pipeline driver: owns the asset worker, the channel and the matrix cache."""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterator, Optional

from .config import SETTINGS, DitherSettings
from .errors import DitherError
from .infrastructure.assets import OrderedMatrixProvider
from .infrastructure.channel import CorrelationChannel, uid
from .infrastructure.worker import AssetWorker
from .processing.image import RawImage
from .processing.pipeline import COLOR, GRAY, MODES, DitherPipeline, PipelineEvent

log = logging.getLogger(__name__)


class ServiceState(str, Enum):
    IDLE = "idle"
    AWAITING_IMAGE = "awaiting_image"
    RUNNING = "running"


class DitherService:
    """Run dithering jobs on one event loop.

    The worker, channel and provider are only touched from that loop, which
    serializes every access to the pending-request table and the matrix
    cache. Jobs interleave at their awaits; each job's events keep catalogue
    order.
    """

    def __init__(
        self, settings: DitherSettings = SETTINGS, worker: Optional[AssetWorker] = None
    ) -> None:
        self.settings = settings
        self.worker = worker or AssetWorker(settings)
        self.channel = CorrelationChannel(self.worker)
        self.assets = OrderedMatrixProvider(self.channel, timeout=settings.asset_timeout)
        self.active_jobs: Dict[str, int] = {}
        self._started = False

    @property
    def state(self) -> ServiceState:
        if not self._started:
            return ServiceState.IDLE
        return ServiceState.RUNNING if self.active_jobs else ServiceState.AWAITING_IMAGE

    async def start(self) -> None:
        if self._started:
            return
        self.channel.start()
        precompute = self.settings.precompute_assets
        if precompute:
            self.assets.prime()
        await self.worker.start(broadcast_blue_noise=precompute)
        if precompute:
            self.assets.warm(range(self.settings.bayer_levels), scope="startup")
        self._started = True

    async def stop(self) -> None:
        await self.worker.stop()
        await self.channel.close()
        self._started = False

    def pipeline(self, mode: str) -> DitherPipeline:
        return DitherPipeline.for_mode(mode, self.assets, self.settings)

    def _track(self, job_id: str, step_index: int) -> None:
        self.active_jobs[job_id] = step_index

    async def run_job(
        self, source: RawImage, mode: Optional[str] = None, job_id: Optional[str] = None
    ) -> AsyncIterator[PipelineEvent]:
        """Stream the events of one job, ending with an ``error`` event if it fails."""
        if not self._started:
            raise RuntimeError("DitherService.start() has not been awaited")
        mode = mode or (COLOR if source.channels == 3 else GRAY)
        if mode not in MODES:
            raise ValueError(f"Unknown pipeline mode: {mode!r}")
        job_id = job_id or uid()

        self.active_jobs[job_id] = -1
        log.info("Job %s started (%s, %sx%s)", job_id, mode, source.width, source.height)
        try:
            async for event in self.pipeline(mode).run(source, job_id, on_step=self._track):
                yield event
        except DitherError as exc:
            log.warning("Job %s failed: %s", job_id, exc)
            yield PipelineEvent("error", job_id, "error", "Error", message=str(exc))
        except Exception as exc:
            log.exception("Job %s crashed", job_id)
            yield PipelineEvent("error", job_id, "error", "Error", message=f"{type(exc).__name__}: {exc}")
        else:
            log.info("Job %s finished", job_id)
        finally:
            self.active_jobs.pop(job_id, None)

    def health(self) -> Dict[str, Any]:
        return {
            "ok": self._started,
            "state": self.state.value,
            "assets": self.assets.cached_keys,
            "pending": sorted(self.channel.pending_ids),
            "jobs": dict(self.active_jobs),
        }


_DONE = object()


class ServiceRunner:
    """Host a :class:`DitherService` on an event loop in a daemon thread.

    Gives synchronous callers such as Flask views an iterator of events.
    """

    def __init__(self, settings: DitherSettings = SETTINGS) -> None:
        self.settings = settings
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._service: Optional[DitherService] = None

    @property
    def started(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=self._run_loop, args=(loop,), name="ditherlab-pipeline", daemon=True
            )
            thread.start()
            service = DitherService(self.settings)
            asyncio.run_coroutine_threadsafe(service.start(), loop).result()
            self._loop, self._thread, self._service = loop, thread, service

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def _call(self, coro):
        self.start()
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    def health(self) -> Dict[str, Any]:
        async def snapshot() -> Dict[str, Any]:
            return self._service.health()

        return self._call(snapshot())

    def stream(
        self, source: RawImage, mode: Optional[str] = None, job_id: Optional[str] = None
    ) -> Iterator[PipelineEvent]:
        self.start()
        events: "queue.Queue[Any]" = queue.Queue()

        async def pump() -> None:
            try:
                async for event in self._service.run_job(source, mode, job_id):
                    events.put(event)
            finally:
                events.put(_DONE)

        future = asyncio.run_coroutine_threadsafe(pump(), self._loop)
        try:
            while True:
                item = events.get()
                if item is _DONE:
                    break
                yield item
        except GeneratorExit:
            future.cancel()
            raise
        future.result()

    def stop(self) -> None:
        with self._lock:
            if self._thread is None:
                return
            loop, thread, service = self._loop, self._thread, self._service
            asyncio.run_coroutine_threadsafe(service.stop(), loop).result()
            loop.call_soon_threadsafe(loop.stop)
            thread.join()
            loop.close()
            self._loop = self._thread = self._service = None
