from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "AIP Insights"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None

    # Model storage
    model_storage_backend: str = "file"
    model_storage_dir: str = "data/models"

    # Snapshots
    snapshot_fixture_path: str = "data/snapshots/aip_snapshots.json"
    historical_program_limit: int = 3

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "aip_insights"
    metrics_disable: bool = False
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    # Security
    cors_origins: list[str] = []  # Empty by default for security

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = ConfigDict(
        env_file=".env", case_sensitive=False, protected_namespaces=("settings_",)
    )


settings = Settings()
