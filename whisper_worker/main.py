from __future__ import annotations

import asyncio
import json
import logging
import uuid
from functools import partial

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from common.config import WorkerSettings
from common.schemas import (
    CancelRequest,
    ErrorMessage,
    InboundMessageType,
    InferenceRequest,
)
from whisper_worker.audio import decode_pcm
from whisper_worker.loader import load_pipeline
from whisper_worker.outbox import Outbox
from whisper_worker.pipeline import PipelineProvider
from whisper_worker.registry import RequestRegistry, RunningRequest
from whisper_worker.transcriber import transcribe

logger = logging.getLogger(__name__)

settings = WorkerSettings()
app = FastAPI(title="Whisper Worker")
provider = PipelineProvider(partial(load_pipeline, settings))
registry = RequestRegistry(max_requests=settings.max_requests)


@app.on_event("startup")
async def startup():
    if settings.preload:
        asyncio.create_task(_preload())


async def _preload():
    try:
        await provider.get_instance()
    except Exception:
        logger.warning("Model preload failed; loading again on first request")


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "model_loaded": provider.loaded,
        "active_requests": registry.active_count,
    }


@app.websocket("/worker")
async def worker_endpoint(ws: WebSocket):
    await ws.accept()
    connection_id = uuid.uuid4().hex
    outbox = Outbox()
    sender = asyncio.create_task(outbox.drain(ws))
    pending: InferenceRequest | None = None
    logger.info("Worker connection opened: %s", connection_id)

    try:
        while True:
            message = await ws.receive()
            if message.get("type") == "websocket.disconnect":
                break

            if message.get("text") is not None:
                pending = _handle_text(message["text"], pending)
            elif message.get("bytes") is not None:
                if pending is None:
                    logger.debug("Ignoring audio frame without a request header")
                    continue
                await _start_request(pending, message["bytes"], outbox, connection_id)
                pending = None

    except WebSocketDisconnect:
        logger.info("Worker client disconnected: %s", connection_id)
    except Exception:
        logger.exception("Unexpected error in worker endpoint")
    finally:
        cancelled = registry.cancel_connection(connection_id)
        if cancelled:
            logger.info("Cancelled %d running requests of %s", len(cancelled), connection_id)
        await asyncio.gather(
            *(r.task for r in cancelled if r.task is not None), return_exceptions=True
        )
        outbox.close()
        try:
            await sender
        except Exception:
            logger.debug("Outbox for %s closed with unsent messages", connection_id)
        logger.info("Worker connection closed: %s", connection_id)


def _handle_text(raw: str, pending: InferenceRequest | None) -> InferenceRequest | None:
    """Apply one inbound text frame; returns the request header awaiting audio."""
    try:
        data = json.loads(raw)
        kind = data.get("type")
    except (json.JSONDecodeError, AttributeError):
        logger.debug("Ignoring malformed message")
        return pending

    try:
        if kind == InboundMessageType.inference_request:
            request = InferenceRequest(**data)
            if not request.request_id:
                request = request.model_copy(update={"request_id": uuid.uuid4().hex})
            return request
        if kind == InboundMessageType.cancel:
            cancel = CancelRequest(**data)
            if not registry.cancel(cancel.request_id):
                logger.debug("Cancel for unknown request %s", cancel.request_id)
            return pending
    except ValidationError as exc:
        logger.debug("Ignoring invalid %s message: %s", kind, exc)
        return pending

    logger.debug("Ignoring message of type %r", kind)
    return pending


async def _start_request(
    request: InferenceRequest,
    payload: bytes,
    outbox: Outbox,
    connection_id: str,
) -> None:
    request_id = request.request_id
    try:
        audio = decode_pcm(payload, request.encoding)
    except ValueError as exc:
        outbox.post(ErrorMessage(request_id=request_id, detail=str(exc)))
        return

    try:
        running = await registry.create(request_id, connection_id)
    except RuntimeError as exc:
        logger.warning("Request rejected: %s", exc)
        outbox.post(ErrorMessage(request_id=request_id, detail=str(exc)))
        return

    inputs = {"raw": audio, "sampling_rate": request.sample_rate}
    running.task = asyncio.create_task(_run(running, inputs, outbox))


async def _run(running: RunningRequest, inputs: dict, outbox: Outbox) -> None:
    try:
        await transcribe(
            running.request_id,
            inputs,
            outbox.post,
            provider,
            settings,
            cancel_event=running.cancel_event,
        )
    finally:
        await registry.remove(running.request_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)
