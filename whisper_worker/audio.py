from __future__ import annotations

import numpy as np

from common.schemas import AudioEncoding

_SAMPLE_WIDTH = {
    AudioEncoding.pcm_f32le: 4,
    AudioEncoding.pcm_s16le: 2,
}


def decode_pcm(data: bytes, encoding: AudioEncoding = AudioEncoding.pcm_f32le) -> np.ndarray:
    """Convert a raw little-endian PCM buffer into a float32 array in [-1, 1]."""
    width = _SAMPLE_WIDTH[encoding]
    if len(data) % width:
        raise ValueError(
            f"Audio payload of {len(data)} bytes is not a whole number of {encoding.value} samples"
        )
    if encoding == AudioEncoding.pcm_s16le:
        return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0
    return np.frombuffer(data, dtype="<f4").astype(np.float32)

