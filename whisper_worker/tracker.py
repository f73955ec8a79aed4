"""Merges streaming chunk outputs into displayable transcript intervals."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from common.schemas import (
    PartialResult,
    PartialResultMessage,
    ProcessedInterval,
    ResultMessage,
    WorkerMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_TIME_PRECISION = 0.02
END_ESTIMATE_FACTOR = 0.9


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def time_precision_for(pipeline) -> float:
    """Seconds per timestamp token: chunk_length / max_source_positions."""
    chunk_length = getattr(getattr(pipeline, "feature_extractor", None), "chunk_length", None)
    config = getattr(getattr(pipeline, "model", None), "config", None)
    max_source_positions = getattr(config, "max_source_positions", None)
    if not chunk_length or not max_source_positions:
        return DEFAULT_TIME_PRECISION
    return chunk_length / max_source_positions


def process_segment(segment: dict, index: int, stride_length_s: float) -> ProcessedInterval:
    start, end = segment["timestamp"]
    start_s = round_half_up(start) if start is not None else 0
    end_s = round_half_up(end) if end is not None else 0
    if not end_s:
        # open segment, usually the still-running last chunk
        end_s = round_half_up((start or 0.0) + END_ESTIMATE_FACTOR * stride_length_s)
    return ProcessedInterval(
        index=index,
        text=segment["text"].strip(),
        start=start_s,
        end=max(end_s, start_s),
    )


@dataclass(frozen=True)
class TrackerState:
    chunks: tuple = ()
    intervals: tuple[ProcessedInterval, ...] = ()
    beam_calls: int = 0

    def last_chunk_timestamp(self) -> int:
        if not self.intervals:
            return 0
        return self.intervals[-1].end


class GenerationTracker:
    """Per-request reconciler wired into the engine's two streaming hooks.

    The request's state is an immutable ``TrackerState`` that every callback
    replaces. Each new chunk re-decodes the whole chunk history, since later
    context can move boundaries decided earlier.
    """

    def __init__(
        self,
        pipeline,
        stride_length_s: float,
        emit: Callable[[WorkerMessage], Any],
        request_id: str,
        partial_every: int = 10,
    ) -> None:
        self.pipeline = pipeline
        self.stride_length_s = stride_length_s
        self.emit = emit
        self.request_id = request_id
        self.partial_every = partial_every
        self.time_precision = time_precision_for(pipeline)
        self.state = TrackerState()

    def last_chunk_timestamp(self) -> int:
        return self.state.last_chunk_timestamp()

    def callback_function(self, beams: list[dict]) -> Optional[PartialResult]:
        self.state = replace(self.state, beam_calls=self.state.beam_calls + 1)
        if self.state.beam_calls % self.partial_every != 0:
            return None

        best = beams[0]
        text = self.pipeline.tokenizer.decode(best["output_token_ids"], skip_special_tokens=True)
        result = PartialResult(text=text, start=self.last_chunk_timestamp(), end=None)
        self.emit(PartialResultMessage(request_id=self.request_id, result=result))
        return result

    def chunk_callback(self, chunk: dict) -> ResultMessage:
        chunks = self.state.chunks + (chunk,)
        _, optional = self.pipeline.decode_asr(
            list(chunks),
            time_precision=self.time_precision,
            return_timestamps=True,
            force_full_sequence=False,
        )
        intervals = tuple(
            process_segment(segment, index, self.stride_length_s)
            for index, segment in enumerate(optional.get("chunks", []))
        )
        self.state = replace(self.state, chunks=chunks, intervals=intervals)
        logger.debug(
            "Request %s: %d chunks -> %d intervals", self.request_id, len(chunks), len(intervals)
        )

        message = ResultMessage(
            request_id=self.request_id,
            results=list(intervals),
            is_done=False,
            completed_until_timestamp=self.last_chunk_timestamp(),
        )
        self.emit(message)
        return message
