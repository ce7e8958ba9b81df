import json

import httpx
import pytest

from config import logger
from stream_driver import (
    SnapshotPipeline,
    StreamDriver,
    StreamRequest,
    StreamState,
    TransportError,
)

URL = "https://stream.test/report"


@pytest.fixture(autouse=True)
def disable_logging():
    logger.disabled = True
    yield
    logger.disabled = False


def chunked(*parts: bytes):
    async def body():
        for part in parts:
            yield part

    return body()


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def collect(driver: StreamDriver, **kwargs) -> list:
    return [value async for value in driver.stream(**kwargs)]


class TestSnapshotPipeline:
    def test_feed_and_finish(self):
        pipeline = SnapshotPipeline()
        results = [pipeline.feed(chunk) for chunk in [b"", b'{"a"', b": [1", b", 2]}"]]
        assert [r.recovered for r in results] == [False, True, True, True]
        assert [r.value for r in results[1:]] == [{}, {"a": [1]}, {"a": [1, 2]}]
        assert pipeline.finish() is None
        assert pipeline.text == '{"a": [1, 2]}'

    def test_split_codepoint(self):
        data = '{"name": "Zoë"}'.encode("utf-8")
        split = data.index(b"\xc3") + 1
        pipeline = SnapshotPipeline()
        assert pipeline.feed(data[:split]).value == {"name": "Zo"}
        assert pipeline.feed(data[split:]).value == {"name": "Zoë"}

    def test_finish_flushes_incomplete_codepoint(self):
        pipeline = SnapshotPipeline()
        assert pipeline.feed(b'["a\xe2\x98').value == ["a"]
        assert pipeline.finish().value == ["a�"]

    def test_snapshots_grow_monotonically(self):
        pipeline = SnapshotPipeline()
        data = json.dumps({"items": list(range(20)), "name": "ünïcode"}, ensure_ascii=False).encode()
        snapshots = []
        for i in range(0, len(data), 3):
            pipeline.feed(data[i : i + 3])
            snapshots.append(pipeline.text)
        for before, after in zip(snapshots, snapshots[1:]):
            assert after.startswith(before)


class TestStreamDriver:
    @pytest.mark.asyncio
    async def test_yields_growing_values(self):
        def handler(request):
            return httpx.Response(200, content=chunked(b'{"a":1,', b'"b":[1,2,', b"3]}"))

        driver = StreamDriver(StreamRequest(url=URL), client=client_for(handler))
        assert driver.state == StreamState.IDLE

        values = await collect(driver)
        assert values == [{"a": 1}, {"a": 1, "b": [1, 2]}, {"a": 1, "b": [1, 2, 3]}]
        assert driver.state == StreamState.COMPLETED
        assert driver.chunks_consumed == 3
        assert driver.last_value == {"a": 1, "b": [1, 2, 3]}

    @pytest.mark.asyncio
    async def test_unrecoverable_snapshots_are_skipped(self):
        def handler(request):
            return httpx.Response(200, content=chunked(b"  ", b"tr", b"ue"))

        driver = StreamDriver(StreamRequest(url=URL), client=client_for(handler))
        assert await collect(driver) == [True]
        assert driver.chunks_consumed == 3

    @pytest.mark.asyncio
    async def test_request_method_headers_and_payload(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["headers"] = request.headers
            seen["body"] = request.content
            return httpx.Response(200, content=chunked(b"[]"))

        request = StreamRequest(
            url=URL, method="POST", payload={"q": "x"}, headers={"X-Token": "abc"}
        )
        driver = StreamDriver(request, client=client_for(handler))
        await collect(driver)

        assert seen["method"] == "POST"
        assert seen["headers"]["content-type"] == "application/json"
        assert seen["headers"]["x-token"] == "abc"
        assert json.loads(seen["body"]) == {"q": "x"}

    @pytest.mark.asyncio
    async def test_payload_override_and_no_body(self):
        bodies = []

        def handler(request):
            bodies.append(request.content)
            return httpx.Response(200, content=chunked(b"{}"))

        driver = StreamDriver(
            StreamRequest(url=URL, method="PUT", payload=[1]), client=client_for(handler)
        )
        await collect(driver, payload={"override": True})
        await collect(driver, payload=None)
        assert json.loads(bodies[0]) == {"override": True}
        assert bodies[1] == b""

    @pytest.mark.asyncio
    async def test_restartable(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(200, content=chunked(b'{"n": ', str(len(calls)).encode(), b"}"))

        driver = StreamDriver(StreamRequest(url=URL), client=client_for(handler))
        first = await collect(driver)
        second = await collect(driver)
        assert first[-1] == {"n": 1}
        assert second[-1] == {"n": 2}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        driver = StreamDriver(StreamRequest(url=URL), client=client_for(handler))
        with pytest.raises(TransportError) as excinfo:
            await collect(driver)
        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
        assert driver.state == StreamState.FAILED

    @pytest.mark.asyncio
    async def test_invalid_url(self):
        def handler(request):
            return httpx.Response(200, content=b"[1]")

        driver = StreamDriver(StreamRequest(url="http://[::1"), client=client_for(handler))
        with pytest.raises(TransportError):
            await collect(driver)
        assert driver.state == StreamState.FAILED

    @pytest.mark.asyncio
    async def test_deeply_nested_body_completes(self):
        def handler(request):
            return httpx.Response(200, content=chunked(b"[" * 3000))

        driver = StreamDriver(StreamRequest(url=URL), client=client_for(handler))
        values = await collect(driver)
        assert len(values) == 1
        assert driver.state == StreamState.COMPLETED

    @pytest.mark.asyncio
    async def test_error_status(self):
        def handler(request):
            return httpx.Response(503, content=chunked(b'{"error": "busy"}'))

        driver = StreamDriver(StreamRequest(url=URL), client=client_for(handler))
        with pytest.raises(TransportError):
            await collect(driver)
        assert driver.state == StreamState.FAILED
        assert driver.chunks_consumed == 0

    @pytest.mark.asyncio
    async def test_stream_breaks_off(self):
        async def body():
            yield b'{"items": [1, 2'
            raise httpx.ReadError("connection reset")

        def handler(request):
            return httpx.Response(200, content=body())

        driver = StreamDriver(StreamRequest(url=URL), client=client_for(handler))
        values = []
        with pytest.raises(TransportError):
            async for value in driver.stream():
                values.append(value)
        assert values == [{"items": [1, 2]}]
        assert driver.state == StreamState.FAILED
        assert driver.last_value == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_abandoned_stream_stops_reading(self):
        produced = []

        async def body():
            for part in [b"[1", b", 2", b", 3", b"]"]:
                produced.append(part)
                yield part

        def handler(request):
            return httpx.Response(200, content=body())

        driver = StreamDriver(StreamRequest(url=URL), client=client_for(handler))
        stream = driver.stream()
        assert await stream.__anext__() == [1]
        await stream.aclose()

        assert produced == [b"[1"]
        assert driver.state == StreamState.STREAMING
        assert driver.chunks_consumed == 1

    @pytest.mark.asyncio
    async def test_independent_drivers(self):
        def handler(request):
            name = request.url.path.strip("/")
            return httpx.Response(200, content=chunked(b'{"name": "', name.encode(), b'"}'))

        client = client_for(handler)
        first = StreamDriver(StreamRequest(url="https://stream.test/one"), client=client)
        second = StreamDriver(StreamRequest(url="https://stream.test/two"), client=client)
        assert (await collect(first))[-1] == {"name": "one"}
        assert (await collect(second))[-1] == {"name": "two"}
        assert first.last_value != second.last_value
