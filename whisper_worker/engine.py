from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Protocol, Sequence

from transformers.generation.streamers import BaseStreamer

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[dict], None]
BeamCallback = Callable[[list[dict]], None]


class InferenceCancelled(Exception):
    """Raised inside the engine once a request's cancel event is set."""


class InferencePipeline(Protocol):
    """What the worker needs from a speech-recognition pipeline."""

    tokenizer: Any
    feature_extractor: Any
    model: Any

    def __call__(
        self,
        audio: Any,
        *,
        chunk_length_s: float = 30.0,
        stride_length_s: float = 5.0,
        return_timestamps: bool = True,
        generate_kwargs: Optional[dict] = None,
        chunk_callback: Optional[ChunkCallback] = None,
        callback_function: Optional[BeamCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> dict: ...

    def decode_asr(
        self,
        chunks: Sequence[dict],
        *,
        time_precision: float,
        return_timestamps: bool = True,
        force_full_sequence: bool = False,
    ) -> tuple[str, dict]: ...


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise InferenceCancelled("Inference cancelled")


class BeamStreamer(BaseStreamer):
    """Passes the running best hypothesis to a callback after every decoding step.

    ``generate`` first puts the decoder prompt, then one token per step. Only
    the steps are reported; the prompt is kept so the hypothesis decodes with
    its leading special tokens, which the tokenizer skips anyway.
    """

    def __init__(self, callback: BeamCallback, cancel_event: Optional[threading.Event] = None):
        self.callback = callback
        self.cancel_event = cancel_event
        self._token_ids: list[int] = []
        self._prompt_seen = False

    def put(self, value) -> None:
        _check_cancelled(self.cancel_event)
        ids = value.tolist() if hasattr(value, "tolist") else list(value)
        # batch of one: (1, n) for the prompt, (1,) per step
        if ids and isinstance(ids[0], list):
            ids = ids[0]
        self._token_ids.extend(int(i) for i in ids)
        if not self._prompt_seen:
            self._prompt_seen = True
            return
        self.callback([{"output_token_ids": list(self._token_ids)}])

    def end(self) -> None:
        self._token_ids = []
        self._prompt_seen = False


def _stride_in_seconds(chunk: dict, sampling_rate: int) -> dict:
    if "stride" not in chunk:
        return chunk
    converted = dict(chunk)
    chunk_len, stride_left, stride_right = chunk["stride"]
    converted["stride"] = (
        chunk_len / sampling_rate,
        stride_left / sampling_rate,
        stride_right / sampling_rate,
    )
    return converted


class StreamingWhisperPipeline:
    """Wraps a transformers ASR pipeline with per-chunk and per-step hooks.

    Runs the same preprocess/forward/postprocess loop the pipeline runs for a
    single input, reporting every chunk's raw model output as soon as it is
    produced.
    """

    def __init__(self, pipe) -> None:
        self._pipe = pipe

    @property
    def tokenizer(self):
        return self._pipe.tokenizer

    @property
    def feature_extractor(self):
        return self._pipe.feature_extractor

    @property
    def model(self):
        return self._pipe.model

    def __call__(
        self,
        audio,
        *,
        chunk_length_s: float = 30.0,
        stride_length_s: float = 5.0,
        return_timestamps: bool = True,
        generate_kwargs: Optional[dict] = None,
        chunk_callback: Optional[ChunkCallback] = None,
        callback_function: Optional[BeamCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> dict:
        generate_kwargs = dict(generate_kwargs or {})
        if callback_function is not None:
            generate_kwargs["streamer"] = BeamStreamer(callback_function, cancel_event)

        preprocess_params, forward_params, postprocess_params = self._pipe._sanitize_parameters(
            chunk_length_s=chunk_length_s,
            stride_length_s=stride_length_s,
            return_timestamps=return_timestamps,
            generate_kwargs=generate_kwargs,
        )

        outputs: list[dict] = []
        for model_inputs in self._pipe.preprocess(audio, **preprocess_params):
            _check_cancelled(cancel_event)
            model_outputs = self._pipe.forward(model_inputs, **forward_params)
            outputs.append(model_outputs)
            logger.debug("Chunk %d decoded (is_last=%s)", len(outputs), model_outputs.get("is_last"))
            if chunk_callback is not None:
                chunk_callback(model_outputs)

        _check_cancelled(cancel_event)
        # postprocess rewrites strides in place; keep the reported chunks intact
        return self._pipe.postprocess([dict(o) for o in outputs], **postprocess_params)

    def decode_asr(
        self,
        chunks: Sequence[dict],
        *,
        time_precision: float,
        return_timestamps: bool = True,
        force_full_sequence: bool = False,
    ) -> tuple[str, dict]:
        """Decode the given raw chunks as one stream into text and timestamped segments.

        With ``force_full_sequence`` an unterminated final segment is an error,
        otherwise its end timestamp is left as ``None``.
        """
        sampling_rate = self.feature_extractor.sampling_rate
        model_outputs = [_stride_in_seconds(chunk, sampling_rate) for chunk in chunks]
        text, optional = self.tokenizer._decode_asr(
            model_outputs,
            return_timestamps=return_timestamps,
            return_language=None,
            time_precision=time_precision,
        )
        segments = optional.get("chunks", [])
        if force_full_sequence and segments and segments[-1]["timestamp"][1] is None:
            raise ValueError(
                "Whisper did not predict an ending timestamp, which can happen if audio "
                "is cut off in the middle of a word."
            )
        return text, optional
