from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Inbound: host -> worker ---

class InboundMessageType(str, Enum):
    inference_request = "INFERENCE_REQUEST"
    cancel = "CANCEL"


class AudioEncoding(str, Enum):
    pcm_f32le = "pcm_f32le"
    pcm_s16le = "pcm_s16le"


class InferenceRequest(BaseModel):
    type: InboundMessageType = InboundMessageType.inference_request
    request_id: Optional[str] = None
    sample_rate: int = 16000
    encoding: AudioEncoding = AudioEncoding.pcm_f32le
    # audio payload follows as a single binary frame


class CancelRequest(BaseModel):
    type: InboundMessageType = InboundMessageType.cancel
    request_id: str


# --- Outbound: worker -> host ---

class OutboundMessageType(str, Enum):
    loading = "LOADING"
    downloading = "DOWNLOADING"
    result_partial = "RESULT_PARTIAL"
    result = "RESULT"
    inference_done = "INFERENCE_DONE"
    error = "ERROR"
    cancelled = "CANCELLED"


class LoadingStatus(str, Enum):
    loading = "loading"
    success = "success"
    error = "error"


class ProcessedInterval(BaseModel):
    index: int
    text: str
    start: int
    end: int


class PartialResult(BaseModel):
    text: str
    start: float
    end: Optional[float] = None


class WorkerMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: str

    def dump(self) -> str:
        return self.model_dump_json(by_alias=True)


class LoadingMessage(WorkerMessage):
    type: OutboundMessageType = OutboundMessageType.loading
    status: LoadingStatus


class DownloadingMessage(WorkerMessage):
    type: OutboundMessageType = OutboundMessageType.downloading
    file: str
    progress: float
    loaded: int
    total: int


class PartialResultMessage(WorkerMessage):
    type: OutboundMessageType = OutboundMessageType.result_partial
    result: PartialResult


class ResultMessage(WorkerMessage):
    type: OutboundMessageType = OutboundMessageType.result
    results: list[ProcessedInterval]
    is_done: bool = Field(False, alias="isDone")
    completed_until_timestamp: float = Field(0, alias="completedUntilTimestamp")


class InferenceDoneMessage(WorkerMessage):
    type: OutboundMessageType = OutboundMessageType.inference_done


class ErrorMessage(WorkerMessage):
    type: OutboundMessageType = OutboundMessageType.error
    detail: str


class CancelledMessage(WorkerMessage):
    type: OutboundMessageType = OutboundMessageType.cancelled


TERMINAL_TYPES = frozenset({
    OutboundMessageType.inference_done,
    OutboundMessageType.error,
    OutboundMessageType.cancelled,
})


def is_terminal(data: dict) -> bool:
    """True if a decoded outbound message ends its request."""
    if data.get("type") in {t.value for t in TERMINAL_TYPES}:
        return True
    return data.get("type") == OutboundMessageType.loading.value and data.get("status") == LoadingStatus.error.value
