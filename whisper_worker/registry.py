from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RunningRequest:
    request_id: str
    connection_id: str
    cancel_event: threading.Event = field(default_factory=threading.Event)
    task: asyncio.Task | None = None


class RequestRegistry:
    def __init__(self, max_requests: int = 4) -> None:
        self._max = max_requests
        self._requests: dict[str, RunningRequest] = {}
        self._lock = asyncio.Lock()

    async def create(self, request_id: str, connection_id: str) -> RunningRequest:
        async with self._lock:
            if len(self._requests) >= self._max:
                raise RuntimeError(f"Max requests ({self._max}) reached")
            if request_id in self._requests:
                raise RuntimeError(f"Request {request_id} already running")
            request = RunningRequest(request_id=request_id, connection_id=connection_id)
            self._requests[request_id] = request
            logger.info("Request started: %s (%d active)", request_id, len(self._requests))
            return request

    async def remove(self, request_id: str) -> None:
        async with self._lock:
            self._requests.pop(request_id, None)
            logger.info("Request finished: %s (%d active)", request_id, len(self._requests))

    def cancel(self, request_id: str) -> bool:
        request = self._requests.get(request_id)
        if request is None:
            return False
        request.cancel_event.set()
        logger.info("Cancel requested: %s", request_id)
        return True

    def cancel_connection(self, connection_id: str) -> list[RunningRequest]:
        cancelled = [r for r in self._requests.values() if r.connection_id == connection_id]
        for request in cancelled:
            request.cancel_event.set()
        return cancelled

    @property
    def active_count(self) -> int:
        return len(self._requests)
