import asyncio
import json
import sys
import uuid
import wave

import numpy as np
import websockets

from common.config import ClientSettings
from common.schemas import AudioEncoding, InboundMessageType, is_terminal


def load_audio(wav_path=None, sample_rate=16000):
    """Return float32 mono samples, either from a 16-bit WAV or a 3s test tone."""
    if wav_path:
        with wave.open(wav_path, "rb") as wf:
            print(f"WAV: {wf.getnchannels()}ch, {wf.getframerate()}Hz, {wf.getnframes()} frames")
            if wf.getsampwidth() != 2:
                raise SystemExit("Only 16-bit PCM WAV files are supported")
            data = wf.readframes(wf.getnframes())
            audio = np.frombuffer(data, dtype=np.int16).astype(np.float32) / 32768.0
            if wf.getnchannels() > 1:
                audio = audio.reshape(-1, wf.getnchannels()).mean(axis=1)
            return audio, wf.getframerate()

    t = np.linspace(0, 3, sample_rate * 3, dtype=np.float32)
    return (np.sin(2 * np.pi * 440 * t) * 0.5).astype(np.float32), sample_rate


async def run(wav_path=None):
    settings = ClientSettings()
    audio, sample_rate = load_audio(wav_path, settings.sample_rate)
    request_id = uuid.uuid4().hex

    async with websockets.connect(settings.worker_ws_url, close_timeout=2) as ws:
        await ws.send(json.dumps({
            "type": InboundMessageType.inference_request.value,
            "request_id": request_id,
            "sample_rate": sample_rate,
            "encoding": AudioEncoding.pcm_f32le.value,
        }))
        await ws.send(audio.astype("<f4").tobytes())
        print(f"Sent request {request_id} ({len(audio) / sample_rate:.1f}s), waiting...\n")

        async for msg in ws:
            resp = json.loads(msg)
            print(json.dumps(resp, indent=2))
            if resp.get("request_id") == request_id and is_terminal(resp):
                break

    print("\nDone.")


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        asyncio.run(run(path))
    except websockets.exceptions.ConnectionClosedError:
        pass
