from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_PROVIDER = "gemini"
DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4.1-mini",
}
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"
CHAT_TEMPERATURE = 0.3
QUIZ_TEMPERATURE = 0.5
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    llm_provider: str = DEFAULT_PROVIDER
    gemini_api_key: str = ""
    openai_api_key: str = ""
    chat_model: str = DEFAULT_MODELS[DEFAULT_PROVIDER]
    ocr_model: str = DEFAULT_MODELS[DEFAULT_PROVIDER]
    llm_timeout_seconds: float = 60.0
    max_upload_bytes: int = 25 * 1024 * 1024
    storage_backend: str = "local"
    data_dir: Path = Path("data")
    supabase_url: str = ""
    supabase_key: str = ""
    cors_allowed_origins: tuple[str, ...] = ("http://localhost:3000", "http://127.0.0.1:3000")
    log_level: str = "INFO"

    def api_key_for(self, provider: str) -> str:
        if provider == "openai":
            return self.openai_api_key
        return self.gemini_api_key

    def to_public_dict(self) -> dict:
        return {
            "llm_provider": self.llm_provider,
            "chat_model": self.chat_model,
            "ocr_model": self.ocr_model,
            "storage_backend": self.storage_backend,
            "max_upload_bytes": self.max_upload_bytes,
        }


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


def load_settings() -> Settings:
    provider = _env("DOCUCHAT_LLM_PROVIDER", DEFAULT_PROVIDER).lower()
    if provider == "chatgpt":
        provider = "openai"
    default_model = DEFAULT_MODELS.get(provider, DEFAULT_MODELS[DEFAULT_PROVIDER])
    max_upload_mb = _env_float("DOCUCHAT_MAX_UPLOAD_MB", 25.0)

    return Settings(
        llm_provider=provider,
        gemini_api_key=_env("GEMINI_API_KEY"),
        openai_api_key=_env("OPENAI_API_KEY"),
        chat_model=_env("DOCUCHAT_CHAT_MODEL", default_model),
        ocr_model=_env("DOCUCHAT_OCR_MODEL", default_model),
        llm_timeout_seconds=_env_float("DOCUCHAT_LLM_TIMEOUT_SECONDS", 60.0),
        max_upload_bytes=int(max_upload_mb * 1024 * 1024),
        storage_backend=_env("DOCUCHAT_STORAGE_BACKEND", "local").lower(),
        data_dir=Path(_env("DOCUCHAT_DATA_DIR", "data")),
        supabase_url=_env("SUPABASE_URL").rstrip("/"),
        supabase_key=_env("SUPABASE_SERVICE_KEY"),
        cors_allowed_origins=_split_origins(_env("DOCUCHAT_CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)),
        log_level=_env("DOCUCHAT_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
