"""Centralized configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide settings sourced from .env / environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────────────
    claimflow_env: str = "development"
    claimflow_log_level: str = "INFO"

    # ── API Server ───────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 5001
    cors_origins: str = "http://localhost:3000"

    # ── Database ─────────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///data/claimflow.db"

    # ── Receipts ─────────────────────────────────────────────────────
    uploads_dir: str = "uploads"
    max_receipt_bytes: int = 10 * 1024 * 1024

    # ── OCR ──────────────────────────────────────────────────────────
    ocr_language: str = "eng"
    ocr_timeout_seconds: float = 30.0
    tesseract_cmd: str = ""
    ocr_max_workers: int = 2

    # ── Notifications ────────────────────────────────────────────────
    notification_timeout_seconds: float = 10.0

    smtp_server: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_sender: str = ""

    @field_validator("ocr_timeout_seconds", "notification_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("ocr_max_workers")
    @classmethod
    def _at_least_one_worker(cls, v: int) -> int:
        if v < 1:
            raise ValueError("ocr_max_workers must be at least 1")
        return v

    # ── Derived ──────────────────────────────────────────────────────
    @property
    def uploads_path(self) -> Path:
        """Return the receipt upload directory, creating it if needed."""
        path = Path(self.uploads_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def allowed_origins(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def smtp_configured(self) -> bool:
        """Check if outbound email has enough settings to send."""
        return bool(self.smtp_server and self.smtp_username)

    @property
    def is_production(self) -> bool:
        return self.claimflow_env == "production"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
