import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from pydantic_settings import BaseSettings

# Build paths inside the project like this: BASE_DIR / 'subdir'.
# This points to the 'backend' directory
BASE_DIR = Path(__file__).resolve().parent.parent.parent


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str
    base_url: str
    model: str
    timeout: int

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class AnthropicConfig:
    api_key: str
    base_url: str
    model: str
    timeout: int
    max_tokens: int = 4096

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class ElevenLabsConfig:
    api_key: str
    base_url: str
    model: str
    default_voice_id: str
    timeout: int

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class ComfyUIConfig:
    url: str
    poll_interval_seconds: float = 1.0
    max_poll_attempts: int = 300
    timeout: int = 60


@dataclass(frozen=True)
class TextProviderPolicy:
    """Fixed order in which text providers are tried when none is requested."""
    precedence: Tuple[str, ...] = ("openai", "anthropic")


class Settings(BaseSettings):
    BASE_DIR: Path = BASE_DIR
    PROJECT_NAME: str = "Short Drama Studio"
    API_V1_STR: str = "/api/v1"

    # Render-style hosts hand out postgres:// but SQLAlchemy needs postgresql://
    _db_url: str = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR}/shortdrama.db")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)

    DATABASE_URL: str = _db_url
    DB_POOL_PRE_PING: bool = True
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800
    SQLITE_BUSY_TIMEOUT_MS: int = 5000

    UPLOAD_DIR: str = "uploads"
    MAX_IMAGE_UPLOAD_MB: int = 10
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    GZIP_MINIMUM_SIZE: int = 1024
    SECURITY_HEADERS_ENABLED: bool = True
    SECURITY_HSTS_SECONDS: int = 31536000
    RATE_LIMIT_GENERATION: str = "30/minute"

    # Text generation
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o"
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com/v1"
    ANTHROPIC_MODEL: str = "claude-sonnet-4-20250514"
    TEXT_PROVIDER_PRECEDENCE: str = "openai,anthropic"
    LLM_TIMEOUT_SECONDS: int = 600

    # Speech
    ELEVENLABS_API_KEY: str = ""
    ELEVENLABS_BASE_URL: str = "https://api.elevenlabs.io/v1"
    ELEVENLABS_MODEL: str = "eleven_multilingual_v2"
    ELEVENLABS_DEFAULT_VOICE_ID: str = "21m00Tcm4TlvDq8ikWAM"

    # Image/video graph service
    COMFYUI_URL: str = "http://localhost:8188"
    COMFYUI_POLL_INTERVAL_SECONDS: float = 1.0
    COMFYUI_MAX_POLL_ATTEMPTS: int = 300

    PROVIDER_TIMEOUT_SECONDS: int = 120
    # Startup only fails in_progress shots untouched for this long; younger ones may belong to a live worker
    GENERATION_STALE_AFTER_SECONDS: int = 3600

    class Config:
        env_file = ".env"

    def openai_config(self) -> OpenAIConfig:
        return OpenAIConfig(
            api_key=self.OPENAI_API_KEY,
            base_url=self.OPENAI_BASE_URL.rstrip("/"),
            model=self.OPENAI_MODEL,
            timeout=self.LLM_TIMEOUT_SECONDS,
        )

    def anthropic_config(self) -> AnthropicConfig:
        return AnthropicConfig(
            api_key=self.ANTHROPIC_API_KEY,
            base_url=self.ANTHROPIC_BASE_URL.rstrip("/"),
            model=self.ANTHROPIC_MODEL,
            timeout=self.LLM_TIMEOUT_SECONDS,
        )

    def elevenlabs_config(self) -> ElevenLabsConfig:
        return ElevenLabsConfig(
            api_key=self.ELEVENLABS_API_KEY,
            base_url=self.ELEVENLABS_BASE_URL.rstrip("/"),
            model=self.ELEVENLABS_MODEL,
            default_voice_id=self.ELEVENLABS_DEFAULT_VOICE_ID,
            timeout=self.PROVIDER_TIMEOUT_SECONDS,
        )

    def comfyui_config(self) -> ComfyUIConfig:
        return ComfyUIConfig(
            url=self.COMFYUI_URL.rstrip("/"),
            poll_interval_seconds=self.COMFYUI_POLL_INTERVAL_SECONDS,
            max_poll_attempts=self.COMFYUI_MAX_POLL_ATTEMPTS,
            timeout=self.PROVIDER_TIMEOUT_SECONDS,
        )

    def text_provider_policy(self) -> TextProviderPolicy:
        names = [item.strip().lower() for item in (self.TEXT_PROVIDER_PRECEDENCE or "").split(",")]
        return TextProviderPolicy(precedence=tuple(name for name in names if name))


settings = Settings()
