"""Streaming HTTP driver producing best-effort JSON snapshots.

The driver issues one request through :mod:`httpx`, reads the response body
chunk by chunk and runs every chunk through the snapshot pipeline:

    bytes -> ChunkDecoder -> TextAccumulator -> BestEffortJsonParser

Each time the accumulated text can be interpreted, the parsed value is
yielded. Every value is a full replacement of the previous one, never a
delta; an array closed early after two elements may come back with five.
"""

import json
from enum import IntEnum
from typing import Any, AsyncIterator, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from best_effort_parser import BestEffortJsonParser, ParseResult
from chunk_decoder import ChunkDecoder
from config import logger, settings
from text_accumulator import TextAccumulator


class StreamingJSONError(Exception):
    """Base class for errors surfaced to stream consumers."""

    pass


class TransportError(StreamingJSONError):
    """The request failed or the response stream broke off.

    Raised to the consumer once the driver is in the FAILED state. Never
    retried by the driver.
    """

    pass


class StreamState(IntEnum):
    """Lifecycle of one stream.

    Attributes:
        IDLE: No request issued yet.
        REQUESTING: Request sent, waiting for the response headers.
        STREAMING: Reading the response body.
        COMPLETED: The body ended normally.
        FAILED: The transport reported an error.
    """

    IDLE = 1
    REQUESTING = 2
    STREAMING = 3
    COMPLETED = 4
    FAILED = 5


class StreamRequest(BaseModel):
    """What to request and how to run it.

    Attributes:
        url (str): Endpoint streaming the JSON document.
        method (str): One of GET, POST, PUT, DELETE.
        payload (Any): JSON-serializable request body, None sends no body.
        headers (dict[str, str]): Extra headers, merged over the defaults.
        manual (bool): Do not start automatically, wait for an explicit run.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    method: Literal["GET", "POST", "PUT", "DELETE"] = "GET"
    payload: Any = None
    headers: dict[str, str] = Field(default_factory=dict)
    manual: bool = False


class SnapshotPipeline:
    """Turns the chunks of one response into parse results, without any I/O.

    Attributes:
        decoder (ChunkDecoder): Bytes to text, carrying split codepoints.
        accumulator (TextAccumulator): The growing text of the document.
        parser (BestEffortJsonParser): Parses each snapshot.
    """

    def __init__(self, encoding: Optional[str] = None) -> None:
        self.decoder = ChunkDecoder(encoding)
        self.accumulator = TextAccumulator()
        self.parser = BestEffortJsonParser()

    @property
    def text(self) -> str:
        return self.accumulator.snapshot

    def feed(self, chunk: bytes) -> ParseResult:
        """Adds one chunk and parses the resulting snapshot."""
        snapshot = self.accumulator.append(self.decoder.decode(chunk))
        return self.parser.parse(snapshot)

    def finish(self) -> Optional[ParseResult]:
        """Flushes the decoder at end of stream.

        Returns:
            Optional[ParseResult]: The parse of the final snapshot, or None if
                the flush added no text.
        """
        tail = self.decoder.flush()
        if not tail:
            return None
        return self.parser.parse(self.accumulator.append(tail))


_UNSET = object()


class StreamDriver:
    """Runs streaming requests and yields best-effort JSON values.

    One driver serves one stream at a time; call :meth:`stream` again to
    restart. Independent drivers share no state.

    Args:
        request (StreamRequest): Request configuration.
        client (Optional[httpx.AsyncClient]): Client to send requests with.
            Without one, a client is created per stream and closed with it.

    Attributes:
        request (StreamRequest): Request configuration.
        state (StreamState): State of the current or last stream.
        chunks_consumed (int): Chunks read in the current or last stream.
        last_value (Any): Latest value yielded, None before the first one.
    """

    def __init__(
        self, request: StreamRequest, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self.request = request
        self._client = client
        self.state = StreamState.IDLE
        self.chunks_consumed = 0
        self.last_value: Any = None

    def _headers(self) -> dict[str, str]:
        return {**settings.default_headers, **self.request.headers}

    async def stream(self, payload: Any = _UNSET) -> AsyncIterator[Any]:
        """Sends the request and yields a value per interpretable snapshot.

        Snapshots with no safe interpretation yet are skipped. Closing the
        iterator early closes the response.

        Args:
            payload: Request body overriding the configured payload.

        Yields:
            Any: The best-effort value of the document received so far.

        Raises:
            TransportError: If the URL is invalid, the request fails, the
                server answers with an error status, or the body breaks off.
        """
        if payload is _UNSET:
            payload = self.request.payload
        content = None if payload is None else json.dumps(payload)

        self.state = StreamState.REQUESTING
        self.chunks_consumed = 0
        client = self._client or httpx.AsyncClient(timeout=settings.request_timeout)
        pipeline = SnapshotPipeline()
        logger.debug({"method": self.request.method, "url": self.request.url})

        try:
            async with client.stream(
                self.request.method,
                self.request.url,
                headers=self._headers(),
                content=content,
            ) as response:
                response.raise_for_status()
                self.state = StreamState.STREAMING

                async for chunk in response.aiter_bytes():
                    self.chunks_consumed += 1
                    result = pipeline.feed(chunk)
                    logger.debug(
                        {
                            "chunk": self.chunks_consumed,
                            "size": len(chunk),
                            "text": len(pipeline.text),
                            "recovered": result.recovered,
                        }
                    )
                    if result:
                        self.last_value = result.value
                        yield result.value

                result = pipeline.finish()
                if result:
                    self.last_value = result.value
                    yield result.value
                self.state = StreamState.COMPLETED
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.state = StreamState.FAILED
            logger.error({"url": self.request.url, "error": repr(e)})
            raise TransportError(f"{self.request.method} {self.request.url}: {e}") from e
        finally:
            if self.state in (StreamState.REQUESTING, StreamState.STREAMING):
                logger.debug({"abandoned": self.request.url, "chunks": self.chunks_consumed})
            if self._client is None:
                await client.aclose()

        logger.debug({"completed": self.request.url, "chunks": self.chunks_consumed})
