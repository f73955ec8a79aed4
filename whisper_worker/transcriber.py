from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from common.config import WorkerSettings
from common.schemas import (
    CancelledMessage,
    DownloadingMessage,
    ErrorMessage,
    InferenceDoneMessage,
    LoadingMessage,
    LoadingStatus,
    WorkerMessage,
)
from whisper_worker.engine import InferenceCancelled
from whisper_worker.pipeline import PipelineProvider
from whisper_worker.tracker import GenerationTracker

logger = logging.getLogger(__name__)

Emit = Callable[[WorkerMessage], Any]

# greedy decoding
GENERATE_KWARGS = {"do_sample": False, "num_beams": 1}


def _progress_adapter(emit: Emit, request_id: str) -> Callable[[dict], None]:
    def on_progress(data: dict) -> None:
        if data.get("status") != "progress":
            return
        emit(DownloadingMessage(
            request_id=request_id,
            file=data["file"],
            progress=data["progress"],
            loaded=data["loaded"],
            total=data["total"],
        ))

    return on_progress


async def transcribe(
    request_id: str,
    audio: Any,
    emit: Emit,
    provider: PipelineProvider,
    settings: WorkerSettings,
    cancel_event: Optional[threading.Event] = None,
) -> str:
    """Run one transcription request, reporting only through ``emit``.

    Every request ends with exactly one terminal message: ``LOADING/error``,
    ``INFERENCE_DONE``, ``ERROR`` or ``CANCELLED``. Returns the final state.
    """
    emit(LoadingMessage(request_id=request_id, status=LoadingStatus.loading))

    try:
        pipe = await provider.get_instance(_progress_adapter(emit, request_id))
    except Exception as exc:
        logger.error("Failed to load pipeline for %s: %s", request_id, exc)
        emit(LoadingMessage(request_id=request_id, status=LoadingStatus.error))
        return "error"

    emit(LoadingMessage(request_id=request_id, status=LoadingStatus.success))

    tracker = GenerationTracker(
        pipe,
        settings.stride_length_s,
        emit,
        request_id,
        partial_every=settings.partial_every,
    )

    try:
        await asyncio.to_thread(
            pipe,
            audio,
            chunk_length_s=settings.chunk_length_s,
            stride_length_s=settings.stride_length_s,
            return_timestamps=True,
            generate_kwargs=dict(GENERATE_KWARGS),
            chunk_callback=tracker.chunk_callback,
            callback_function=tracker.callback_function,
            cancel_event=cancel_event,
        )
    except InferenceCancelled:
        logger.info("Inference cancelled: %s", request_id)
        emit(CancelledMessage(request_id=request_id))
        return "cancelled"
    except Exception as exc:
        logger.exception("Inference failed for %s", request_id)
        emit(ErrorMessage(request_id=request_id, detail=f"Inference failed: {exc}"))
        return "failed"

    emit(InferenceDoneMessage(request_id=request_id))
    return "done"
