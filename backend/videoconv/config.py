from pydantic_settings import BaseSettings
from typing import List
import json
import os
import shutil


def _find_binary(name: str, fallback: str) -> str:
    return shutil.which(name) or fallback


class Settings(BaseSettings):
    FFMPEG_PATH: str = _find_binary("ffmpeg", "/usr/local/bin/ffmpeg")
    FFPROBE_PATH: str = _find_binary("ffprobe", "/usr/local/bin/ffprobe")
    LOG_LEVEL: str = "INFO"
    API_PORT: int = 5174
    API_HOST: str = "0.0.0.0"
    CORS_ORIGINS: str = '["*"]'

    UPLOAD_DIR: str = os.path.abspath("uploads")
    OUTPUT_DIR: str = os.path.abspath("output")
    MAX_UPLOAD_BYTES: int = 500 * 1024 * 1024

    # Retention: per-job deletion after RETENTION_SECONDS, plus a periodic
    # sweep of anything older than SWEEP_MAX_AGE_SECONDS. Keep
    # SWEEP_MAX_AGE_SECONDS <= RETENTION_SECONDS, or files orphaned by a
    # restart can outlive RETENTION_SECONDS + SWEEP_INTERVAL_SECONDS.
    RETENTION_SECONDS: float = 10 * 60
    SWEEP_INTERVAL_SECONDS: float = 60 * 60
    SWEEP_MAX_AGE_SECONDS: float = 10 * 60
    SWEEP_ON_SHUTDOWN: bool = True

    # 0 disables the hard per-job timeout
    JOB_TIMEOUT_SECONDS: float = 0

    @property
    def cors_origins_list(self) -> List[str]:
        return json.loads(self.CORS_ORIGINS)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
