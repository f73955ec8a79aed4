from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict], None]


class PipelineProvider:
    """Lazily builds the inference pipeline once and shares it.

    The first caller starts construction and publishes the pending task;
    callers arriving before it finishes await that same task. A failed build
    leaves nothing cached, so the next call tries again.
    """

    def __init__(self, factory: Callable[[Optional[ProgressCallback]], object]) -> None:
        self._factory = factory
        self._instance = None
        self._building: asyncio.Task | None = None

    @property
    def loaded(self) -> bool:
        return self._instance is not None

    async def get_instance(self, progress_callback: Optional[ProgressCallback] = None):
        if self._instance is not None:
            return self._instance
        if self._building is None:
            self._building = asyncio.create_task(self._build(progress_callback))
        # a cancelled waiter must not cancel the shared build
        return await asyncio.shield(self._building)

    async def _build(self, progress_callback: Optional[ProgressCallback]):
        logger.info("Building inference pipeline")
        try:
            instance = await asyncio.to_thread(self._factory, progress_callback)
        except Exception:
            logger.exception("Pipeline load error")
            self._building = None
            raise
        self._instance = instance
        self._building = None
        logger.info("Inference pipeline ready")
        return instance
