from __future__ import annotations

import fnmatch
import logging
import os
from typing import Optional

from huggingface_hub import HfApi, hf_hub_download, snapshot_download
from transformers import pipeline

from common.config import WorkerSettings
from whisper_worker.engine import StreamingWhisperPipeline
from whisper_worker.pipeline import ProgressCallback

logger = logging.getLogger(__name__)

ALLOW_PATTERNS = ["*.json", "*.safetensors", "*.txt"]


def _wanted(filename: str) -> bool:
    return any(fnmatch.fnmatch(filename, pattern) for pattern in ALLOW_PATTERNS)


def _report(progress_callback: Optional[ProgressCallback], **data) -> None:
    if progress_callback is not None:
        progress_callback(data)


def fetch_model(
    settings: WorkerSettings,
    progress_callback: Optional[ProgressCallback] = None,
) -> str:
    """Download the model files one by one and return the local snapshot directory.

    Reports ``initiate``, ``progress`` and ``done`` statuses per file.
    """
    if os.path.isdir(settings.model_name):
        return settings.model_name

    if settings.local_files_only:
        return snapshot_download(
            settings.model_name,
            revision=settings.revision,
            cache_dir=settings.cache_dir,
            local_files_only=True,
        )

    info = HfApi().model_info(settings.model_name, revision=settings.revision, files_metadata=True)
    for sibling in info.siblings or []:
        name = sibling.rfilename
        if not _wanted(name):
            continue
        total = sibling.size or 0
        _report(progress_callback, status="initiate", file=name)
        hf_hub_download(
            settings.model_name,
            name,
            revision=settings.revision,
            cache_dir=settings.cache_dir,
        )
        _report(progress_callback, status="progress", file=name, progress=100.0, loaded=total, total=total)
        _report(progress_callback, status="done", file=name)

    # every wanted file is cached now, this only resolves the snapshot path
    return snapshot_download(
        settings.model_name,
        revision=settings.revision,
        cache_dir=settings.cache_dir,
        allow_patterns=ALLOW_PATTERNS,
    )


def _pick_device(device: str) -> str:
    if device != "auto":
        return device
    try:
        import torch

        return "cuda:0" if torch.cuda.is_available() else "cpu"
    except ImportError:
        return "cpu"


def load_pipeline(
    settings: WorkerSettings,
    progress_callback: Optional[ProgressCallback] = None,
) -> StreamingWhisperPipeline:
    model_path = fetch_model(settings, progress_callback)
    device = _pick_device(settings.device)
    logger.info("Loading %s pipeline: %s on %s", settings.task, settings.model_name, device)
    pipe = pipeline(
        settings.task,
        model=model_path,
        device=device,
        torch_dtype=settings.torch_dtype,
    )
    logger.info("Model loaded")
    return StreamingWhisperPipeline(pipe)
