from pydantic_settings import BaseSettings


class WorkerSettings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8003
    log_level: str = "info"

    task: str = "automatic-speech-recognition"
    model_name: str = "openai/whisper-tiny.en"
    revision: str | None = None
    device: str = "auto"
    torch_dtype: str = "auto"
    cache_dir: str | None = None
    local_files_only: bool = False
    preload: bool = False

    chunk_length_s: float = 30.0
    stride_length_s: float = 5.0
    partial_every: int = 10
    max_requests: int = 4

    model_config = {"env_prefix": "WHISPER_WORKER_", "protected_namespaces": ()}


class ClientSettings(BaseSettings):
    worker_ws_url: str = "ws://localhost:8003/worker"
    sample_rate: int = 16000

    model_config = {"env_prefix": "WHISPER_CLIENT_"}
