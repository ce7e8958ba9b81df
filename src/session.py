"""Keeps the latest value of a JSON stream for a consumer.

A session starts streaming on its own unless the request is marked
``manual``; a manual session waits for :meth:`StreamSession.run`, which may
also override the request payload.

Example:
    >>> async with StreamSession(StreamRequest(url=url)) as session:
    ...     await session.wait()
    ...     print(session.data)
"""

import asyncio
from contextlib import aclosing
from typing import Any, Optional

from config import logger
from stream_driver import StreamDriver, StreamRequest, TransportError


class StreamSession:
    """Latest-value holder over a :class:`StreamDriver`.

    Args:
        request (StreamRequest): What to stream.
        driver (Optional[StreamDriver]): Driver to use, one is built from the
            request if omitted.

    Attributes:
        data (Any): Latest value received, None until the first one.
        error (Optional[TransportError]): Failure of the automatic run, if any.
    """

    def __init__(
        self, request: StreamRequest, driver: Optional[StreamDriver] = None
    ) -> None:
        self.request = request
        self.driver = driver or StreamDriver(request)
        self.data: Any = None
        self.error: Optional[TransportError] = None
        self._task: Optional[asyncio.Task] = None

    async def run(self, payload: Any = None) -> Any:
        """Streams once and returns the last value.

        Args:
            payload: Body replacing the configured payload, if given.

        Raises:
            TransportError: If the stream fails.
        """
        stream = self.driver.stream() if payload is None else self.driver.stream(payload)
        async with aclosing(stream) as values:
            async for value in values:
                self.data = value
        return self.data

    async def _run_automatically(self) -> None:
        try:
            await self.run()
        except TransportError as e:
            logger.error({"automatic_run": self.request.url, "error": str(e)})
            self.error = e

    def start(self) -> Optional[asyncio.Task]:
        """Starts streaming in the background unless the request is manual."""
        if self.request.manual:
            return None
        if self._task is None or self._task.done():
            self.error = None
            self._task = asyncio.create_task(self._run_automatically())
        return self._task

    async def wait(self) -> Any:
        """Waits for the background run, if one was started."""
        if self._task is not None:
            await self._task
        return self.data

    async def aclose(self) -> None:
        """Cancels the background run; the response is closed with it."""
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.debug({"cancelled": self.request.url})

    async def __aenter__(self) -> "StreamSession":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
