from types import SimpleNamespace

import numpy as np
import pytest

from whisper_worker.engine import InferenceCancelled

SAMPLE_RATE = 16000

# Decoder output after one chunk, then after both chunks of a 12s buffer.
# The second window moves the first boundary from 4.6s to 4.2s.
TWO_CHUNK_SCRIPT = [
    [
        {"text": " Hello there.", "timestamp": (0.0, 4.6)},
        {"text": " How are", "timestamp": (4.6, None)},
    ],
    [
        {"text": " Hello there.", "timestamp": (0.0, 4.2)},
        {"text": " How are you today?", "timestamp": (4.2, 9.8)},
        {"text": " Fine.", "timestamp": (9.8, 11.6)},
    ],
]


class StubTokenizer:
    SPECIAL_FROM = 50000

    def decode(self, token_ids, skip_special_tokens=False):
        ids = [i for i in token_ids if not (skip_special_tokens and i >= self.SPECIAL_FROM)]
        return " ".join(f"w{i}" for i in ids)


class StubPipeline:
    """Stands in for StreamingWhisperPipeline without loading a model."""

    def __init__(self, script=None, steps_per_chunk=12, fail_with=None):
        self.script = script or TWO_CHUNK_SCRIPT
        self.steps_per_chunk = steps_per_chunk
        self.fail_with = fail_with
        self.tokenizer = StubTokenizer()
        self.feature_extractor = SimpleNamespace(chunk_length=30, sampling_rate=SAMPLE_RATE)
        self.model = SimpleNamespace(config=SimpleNamespace(max_source_positions=1500))
        self.decode_calls = []
        self.call_kwargs = None

    def raw_chunks(self):
        return [
            {"tokens": [[50257, 1, 2, 3]], "stride": (480000, 0, 80000), "is_last": False},
            {"tokens": [[50257, 4, 5]], "stride": (112000, 80000, 0), "is_last": True},
        ][: len(self.script)]

    def decode_asr(self, chunks, *, time_precision, return_timestamps=True, force_full_sequence=False):
        self.decode_calls.append({
            "n_chunks": len(chunks),
            "time_precision": time_precision,
            "force_full_sequence": force_full_sequence,
        })
        segments = self.script[len(chunks) - 1]
        return "".join(s["text"] for s in segments), {"chunks": segments}

    def __call__(
        self,
        audio,
        *,
        chunk_length_s=30.0,
        stride_length_s=5.0,
        return_timestamps=True,
        generate_kwargs=None,
        chunk_callback=None,
        callback_function=None,
        cancel_event=None,
    ):
        self.call_kwargs = {
            "chunk_length_s": chunk_length_s,
            "stride_length_s": stride_length_s,
            "return_timestamps": return_timestamps,
            "generate_kwargs": generate_kwargs,
        }
        for chunk in self.raw_chunks():
            if cancel_event is not None and cancel_event.is_set():
                raise InferenceCancelled("Inference cancelled")
            for step in range(self.steps_per_chunk):
                callback_function([{"output_token_ids": [50257] + list(range(1, step + 2))}])
            if self.fail_with is not None:
                raise self.fail_with
            chunk_callback(chunk)
        return {"text": ""}


@pytest.fixture
def stub_pipeline():
    return StubPipeline()


@pytest.fixture
def twelve_seconds():
    return np.zeros(12 * SAMPLE_RATE, dtype=np.float32)


class BlockingStubPipeline(StubPipeline):
    """Reports the first chunk, then holds until the request is cancelled."""

    def __init__(self, timeout=10.0):
        super().__init__()
        self.timeout = timeout
        self.cancel_event = None

    def __call__(self, audio, *, chunk_callback=None, cancel_event=None, **kwargs):
        self.cancel_event = cancel_event
        first, second = self.raw_chunks()
        chunk_callback(first)
        if cancel_event.wait(self.timeout):
            raise InferenceCancelled("Inference cancelled")
        chunk_callback(second)
        return {"text": ""}
