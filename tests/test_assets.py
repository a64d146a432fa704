import asyncio
import dataclasses

import pytest

from ditherlab.errors import AssetComputationError
from ditherlab.infrastructure.assets import OrderedMatrixProvider
from ditherlab.infrastructure.channel import CorrelationChannel
from ditherlab.infrastructure.worker import BLUE_NOISE_BROADCAST_ID, AssetWorker
from ditherlab.processing.matrices import MatrixKind, bayer_matrix, blue_noise_mask


class RecordingPort:
    def __init__(self):
        self.responses = asyncio.Queue()
        self.posted = []

    def post(self, message):
        self.posted.append(dict(message))

    async def reply(self, message):
        await self.responses.put(message)
        for _ in range(5):
            await asyncio.sleep(0)


def test_repeated_requests_reuse_one_computation():
    async def scenario():
        port = RecordingPort()
        channel = CorrelationChannel(port)
        channel.start()
        provider = OrderedMatrixProvider(channel)

        first = provider.matrix(MatrixKind.BAYER, 2, scope="job-a")
        second = provider.matrix(MatrixKind.BAYER, 2, scope="job-b")
        waiters = asyncio.gather(provider.bayer(2), provider.bayer(2, scope="job-c"))
        await asyncio.sleep(0)
        await port.reply({"id": port.posted[0]["id"], "result": bayer_matrix(2)})
        a, b = await waiters
        third = provider.matrix(MatrixKind.BAYER, 2)
        await channel.close()
        return port.posted, provider, first, second, third, a, b

    posted, provider, first, second, third, a, b = asyncio.run(scenario())

    assert posted == [{"kind": "bayer", "level": 2, "id": "job-a-bayer-2"}]
    assert provider.requests_sent == 1
    assert first is second is third
    assert a is b
    assert a.width == 8


def test_each_key_gets_its_own_request():
    async def scenario():
        port = RecordingPort()
        channel = CorrelationChannel(port)
        provider = OrderedMatrixProvider(channel)
        provider.warm(range(4), scope="startup")
        provider.warm(range(4), scope="again")
        provider.matrix(MatrixKind.BLUE_NOISE)
        keys = provider.cached_keys
        await channel.close()
        return port.posted, keys

    posted, keys = asyncio.run(scenario())

    assert [m["id"] for m in posted[:4]] == [f"startup-bayer-{level}" for level in range(4)]
    assert posted[4]["kind"] == "bluenoise"
    assert len(posted) == 5
    assert keys == ["bayer-0", "bayer-1", "bayer-2", "bayer-3", "bluenoise-0"]


def test_failed_asset_is_evicted_and_can_be_requested_again():
    async def scenario():
        port = RecordingPort()
        channel = CorrelationChannel(port)
        channel.start()
        provider = OrderedMatrixProvider(channel)

        waiter = asyncio.ensure_future(provider.bayer(1, scope="job-a"))
        await asyncio.sleep(0)
        await port.reply({"id": "job-a-bayer-1", "error": "RuntimeError: worker died"})
        with pytest.raises(AssetComputationError, match="worker died"):
            await waiter
        keys_after_failure = provider.cached_keys

        retry = asyncio.ensure_future(provider.bayer(1, scope="job-b"))
        await asyncio.sleep(0)
        await port.reply({"id": "job-b-bayer-1", "result": bayer_matrix(1)})
        matrix = await retry
        await channel.close()
        return keys_after_failure, provider.requests_sent, matrix

    keys, sent, matrix = asyncio.run(scenario())

    assert keys == []
    assert sent == 2
    assert matrix.width == 4


def test_bounded_wait_surfaces_asset_error():
    async def scenario():
        port = RecordingPort()
        channel = CorrelationChannel(port)
        channel.start()
        provider = OrderedMatrixProvider(channel, timeout=0.01)
        try:
            with pytest.raises(AssetComputationError, match="within"):
                await provider.bayer(0)
            await asyncio.sleep(0)
            return provider.cached_keys, channel.pending_ids
        finally:
            await channel.close()

    keys, pending = asyncio.run(scenario())

    assert keys == []
    assert pending == frozenset()


def test_cancelled_consumer_does_not_cancel_shared_matrix():
    async def scenario():
        port = RecordingPort()
        channel = CorrelationChannel(port)
        channel.start()
        provider = OrderedMatrixProvider(channel)

        impatient = asyncio.ensure_future(provider.bayer(0))
        await asyncio.sleep(0)
        impatient.cancel()
        await asyncio.sleep(0)
        shared = provider.matrix(MatrixKind.BAYER, 0)
        await port.reply({"id": port.posted[0]["id"], "result": bayer_matrix(0)})
        result = await shared
        await channel.close()
        return impatient.cancelled(), result, provider.requests_sent

    cancelled, result, sent = asyncio.run(scenario())

    assert cancelled
    assert result.width == 2
    assert sent == 1


def test_primed_blue_noise_comes_from_the_broadcast():
    async def scenario():
        port = RecordingPort()
        channel = CorrelationChannel(port)
        channel.start()
        provider = OrderedMatrixProvider(channel)
        provider.prime()
        waiter = asyncio.ensure_future(provider.blue_noise())
        await port.reply({"id": BLUE_NOISE_BROADCAST_ID, "result": blue_noise_mask(4)})
        mask = await waiter
        await channel.close()
        return port.posted, mask

    posted, mask = asyncio.run(scenario())

    assert posted == []
    assert mask.width == 4


def test_worker_serves_requests_through_the_channel(settings):
    async def scenario():
        worker = AssetWorker(dataclasses.replace(settings, blue_noise_size=4))
        channel = CorrelationChannel(worker)
        channel.start()
        provider = OrderedMatrixProvider(channel, timeout=30)
        provider.prime()
        await worker.start(broadcast_blue_noise=True)
        try:
            bayer, noise = await asyncio.gather(provider.bayer(3), provider.blue_noise())
            return bayer, noise, worker.computed, provider.requests_sent
        finally:
            await worker.stop()
            await channel.close()

    bayer, noise, computed, sent = asyncio.run(scenario())

    assert bayer.width == 16
    assert noise.width == 4
    assert computed == 2
    assert sent == 1


def test_worker_reports_failures_as_error_responses(settings):
    async def scenario():
        worker = AssetWorker(settings)
        await worker.start()
        worker.post({"kind": "plasma", "level": 0, "id": "odd"})
        reply = await asyncio.wait_for(worker.responses.get(), 10)
        await worker.stop()
        return reply

    reply = asyncio.run(scenario())

    assert reply["id"] == "odd"
    assert "ValueError" in reply["error"]
