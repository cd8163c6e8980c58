from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List, Tuple
import os
from pathlib import Path

PROFANITY_LEXICON: List[str] = [
    "fuck", "shit", "ass", "bitch", "damn", "hell", "bastard", "dick",
    "piss", "crap", "cock", "cunt", "slut", "whore", "nigger", "nigga",
    "fag", "faggot", "retard", "motherfucker", "asshole", "dumbass",
    "bullshit", "goddamn", "wtf", "stfu", "lmao", "porn", "nude", "naked",
]


class SamplingConfig(BaseModel):
    """Knobs for frame sampling and thumbnail extraction"""

    # (max duration in seconds, interval in seconds), checked in order
    interval_table: List[Tuple[int, int]] = [(15, 1), (30, 2), (120, 3), (600, 4), (1800, 6)]
    fallback_interval: int = 8
    first_offset: float = 0.5
    scene_threshold: float = 0.3
    dedupe_window: float = 0.5
    timestamp_precision: int = 2
    thumbnail_width: int = 320
    thumbnail_seek: float = 1.0


class ClassificationConfig(BaseModel):
    """Scoring weights, flag cutoffs and analysis limits"""

    max_weight: float = 0.6
    top_weight: float = 0.25
    mean_weight: float = 0.15
    top_n: int = 5
    weighted_threshold: float = 0.4
    max_threshold: float = 0.7
    moderate_threshold: float = 0.4
    moderate_min_count: int = 2
    language_threshold: float = 0.15
    profanity_multiplier: float = 3.0
    score_precision: int = 4
    batch_size: int = 4
    min_audio_bytes: int = 1000
    profanity_lexicon: List[str] = PROFANITY_LEXICON


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Video Moderation Service"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Security
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Storage
    BASE_STORAGE_PATH: Path = Path(os.getenv("STORAGE_PATH", "../storage"))

    # Database
    DATABASE_URL: str = "sqlite:///./video_moderation.db"
    DB_ECHO: bool = False

    # Inference services
    HUGGINGFACE_API_TOKEN: str = ""
    HUGGINGFACE_BASE_URL: str = "https://router.huggingface.co/hf-inference/models"
    NSFW_MODEL: str = "Falconsai/nsfw_image_detection"
    WHISPER_MODEL: str = "openai/whisper-large-v3"
    TRANSCRIBER_BACKEND: str = "huggingface"  # huggingface | whisper
    LOCAL_WHISPER_MODEL: str = "base"
    INFERENCE_TIMEOUT_SECONDS: int = 120
    INFERENCE_MAX_RETRIES: int = 3

    # Pipeline tuning
    SAMPLING: SamplingConfig = SamplingConfig()
    CLASSIFICATION: ClassificationConfig = ClassificationConfig()

    # Logging
    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
