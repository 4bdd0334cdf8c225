"""Runtime configuration for the receipt API.

All settings come from environment variables (optionally via a ``.env``
file) and are exposed through the module-level ``settings`` object.
Services read it at call time, so tests can monkeypatch attributes.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# .env files are merged without overriding the real environment: the
# project root first, then whatever python-dotenv finds from the cwd.
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_FILES: list[str] = []
for _candidate in (_PROJECT_ROOT / ".env", find_dotenv(usecwd=True)):
    _path = str(_candidate) if _candidate else ""
    if _path and os.path.exists(_path) and _path not in _ENV_FILES:
        _ENV_FILES.append(_path)
        load_dotenv(dotenv_path=_path, override=False)


class Settings(BaseSettings):
    """Typed settings; every attribute can be overridden by an environment variable of the same name."""

    model_config = SettingsConfigDict(
        env_file=tuple(_ENV_FILES) or None,
        case_sensitive=True,
        extra="allow",
    )

    # Service
    PROJECT_NAME: str = "Receipt Ledger"
    ENVIRONMENT: str = Field(default="development")

    # OpenAI
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_MODEL: str = Field(default="gpt-4o-mini")
    # Low temperature keeps run-to-run variance down; extraction is still not deterministic
    OPENAI_TEMPERATURE: float = Field(default=0.1)
    OPENAI_MAX_TOKENS: int = Field(default=2000)
    EXTRACTION_TIMEOUT_SECONDS: float = Field(default=120.0)
    EXTRACTION_DEBUG: bool = Field(default=False)

    # Storage
    STORAGE_BACKEND: str = Field(default="filesystem")
    STORAGE_DIRECTORY: str = Field(default="./receipts")
    MINIO_ENDPOINT: str = Field(default="localhost:9000")
    MINIO_ACCESS_KEY: str = Field(default="minioadmin")
    MINIO_SECRET_KEY: str = Field(default="minioadmin")
    MINIO_BUCKET_NAME: str = Field(default="receipts")
    MINIO_USE_SSL: bool = Field(default=False)

    # Receipt upload / retrieval
    RECEIPT_MAX_SIZE_MB: float = Field(default=10)
    RECEIPT_CACHE_MAX_AGE: int = Field(default=86400)  # 24h
    RECEIPT_PREPROCESS_IMAGES: bool = Field(default=True)
    RECEIPT_MAX_IMAGE_EDGE: int = Field(default=2048)

    # Review
    LOW_CONFIDENCE_THRESHOLD: float = Field(default=0.8)

    # External ledger server (bootstrap gate, directories, payees, transactions)
    LEDGER_API_URL: Optional[str] = Field(default=None)
    LEDGER_API_TOKEN: Optional[str] = Field(default=None)
    LEDGER_TIMEOUT_SECONDS: float = Field(default=10.0)
    # Prefix for the receipt link written into transaction notes
    PUBLIC_BASE_URL: str = Field(default="")

    # Payee creation lock: "local" (single process) or "redis"
    PAYEE_LOCK_BACKEND: str = Field(default="local")
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)

    @property
    def max_upload_bytes(self) -> int:
        return int(self.RECEIPT_MAX_SIZE_MB * 1024 * 1024)


settings = Settings()
