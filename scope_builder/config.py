"""Scope Builder configuration settings.

Loads configuration from environment variables with sensible defaults.
A ``.env`` file in the working directory is honored for local development.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    # LLM providers
    ollama_model: str = field(default_factory=lambda: os.getenv("OLLAMA_MODEL", "qwen3-vl"))
    gemini_model: str = field(default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-2.5-flash"))
    gemini_api_key: Optional[str] = field(default_factory=lambda: os.getenv("GEMINI_API_KEY"))
    prefer_local: bool = field(default_factory=lambda: _env_bool("PREFER_LOCAL", "true"))
    confidence_threshold: float = field(
        default_factory=lambda: float(os.getenv("CONFIDENCE_THRESHOLD", "0.8"))
    )

    # Session persistence
    db_path: str = field(default_factory=lambda: os.getenv("DB_PATH", "scope_sessions.duckdb"))
    session_ttl_hours: int = field(default_factory=lambda: int(os.getenv("SESSION_TTL_HOURS", "24")))

    # Uploads
    max_upload_mb: int = field(default_factory=lambda: int(os.getenv("MAX_UPLOAD_MB", "10")))

    # HTTP
    cors_origins: List[str] = field(
        default_factory=lambda: _env_list(
            "CORS_ORIGINS",
            "http://localhost:3000,http://localhost:5173,http://localhost:5174",
        )
    )

    # Trade partners
    partner_directory_path: Optional[str] = field(
        default_factory=lambda: os.getenv("PARTNER_DIRECTORY_PATH")
    )

    # Email
    email_sender: str = field(
        default_factory=lambda: os.getenv("EMAIL_SENDER", "no-reply@scope-builder.local")
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON", "false"))

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


settings = Settings()
