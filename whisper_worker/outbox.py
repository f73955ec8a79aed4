from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket

from common.schemas import WorkerMessage

logger = logging.getLogger(__name__)


class Outbox:
    """Outbound message queue for one connection.

    ``post`` may be called from the event loop or from inference threads;
    messages reach the socket in the order they were posted.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[WorkerMessage | None] = asyncio.Queue()

    def post(self, message: WorkerMessage) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, message)

    def close(self) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def drain(self, ws: WebSocket) -> None:
        """Send queued messages until ``close`` is called."""
        while True:
            message = await self._queue.get()
            if message is None:
                break
            await ws.send_text(message.dump())
