"""
Configuration for the LexPro back office
========================================

Environment variables (prefix ``LEXPRO_``):
- DB_PATH: SQLite file holding every collection (default: data/lexpro.db)
- DB_TIMEOUT_SECONDS: busy timeout for each connection (default: 15)
- TRANSIENT_RETRIES: extra attempts after a transient backend failure (default: 1)
- SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASSWORD / SMTP_FROM / SMTP_USE_TLS
- SMTP_TIMEOUT_SECONDS: connect and send timeout for outgoing mail (default: 15)
- CURRENCY: currency code used when formatting reports (default: MXN)
- HOST / PORT: bind address when run with `python -m lexpro.main`
- LOG_LEVEL: root logging level (default: INFO)
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="LEXPRO_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    db_path: str = "data/lexpro.db"
    db_timeout_seconds: float = 15.0
    transient_retries: int = 1

    # Outgoing mail
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "LexPro <reportes@lexpro.local>"
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 15.0

    # Presentation
    currency: str = "MXN"
    cors_origins: list[str] = ["http://localhost:8080"]

    # Server
    host: str = "127.0.0.1"
    port: int = 8001

    log_level: str = "INFO"
    service_version: str = "1.0.0"

    def is_email_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
