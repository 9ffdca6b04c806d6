# livedetect/config.py
from typing import List, Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 4000
    CORS_ORIGINS: List[str] = ["*"]

    # "local" runs the detector in-process, "remote" ships frames to the server
    DETECTOR_BACKEND: Literal["local", "remote"] = "local"
    MODEL_PATH: str = "./models/efficientdet_lite0.tflite"
    MIN_SCORE: float = 0.5
    MAX_RESULTS: int = 20
    DETECT_TIMEOUT_S: float = 2.0

    TARGET_WIDTH: int = 320
    TARGET_HEIGHT: int = 240
    SAMPLE_INTERVAL_MS: int = 70
    JPEG_QUALITY: int = 60

    METRICS_FILE: str = "./data/metrics.json"
    METRICS_MAX_SAMPLES: int = 500
    METRICS_FPS_WINDOW_S: float = 5.0
    METRICS_WRITE_INTERVAL_S: float = 5.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

settings = Settings()
