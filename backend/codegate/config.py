"""Worker configuration using Pydantic Settings."""

from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Worker settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_env: str = "development"
    app_debug: bool = False
    web_app_url: str = "http://localhost:5173"

    # Database
    database_url: str = ""  # Required - no insecure default
    database_pool_size: int = 10

    # Redis / Celery
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # Worker pool
    worker_queue: str = "analysis-queue"
    worker_concurrency: int = 2
    worker_job_attempts: int = 2
    worker_backoff_ms: int = 5000

    # Sandboxed analyzer execution
    analyzer_timeout_ms: int = 600_000
    analyzer_memory_mb: int | None = None
    analyzer_cpu_limit: float | None = None
    docker_base_url: str = "unix:///var/run/docker.sock"

    # Filesystem
    workspace_default: str = "/workspace"
    workspace_base: str = "/tmp/workspaces"
    out_base: str = "/tmp/analyzer-out"

    # Object storage (MinIO / S3)
    minio_endpoint: str = "http://localhost:9000"
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_region: str = "us-east-1"
    minio_bucket_sources: str = "sources"
    minio_bucket_artifacts: str = "artifacts"

    # Source-control status publishing
    github_token: str | None = None
    gitlab_token: str | None = None
    gitlab_base_url: str = "https://gitlab.com"

    # CORS
    cors_origins: List[str] = ["http://localhost:5173"]

    @field_validator("database_url", mode="after")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL is set."""
        if not v:
            raise ValueError("database_url must be set via DATABASE_URL environment variable")
        return v

    @field_validator("worker_concurrency", "worker_job_attempts", mode="after")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("worker_backoff_ms", "analyzer_timeout_ms", mode="after")
    @classmethod
    def validate_non_negative(cls, v: int, info) -> int:
        if v < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def gitlab_api_base_url(self) -> str:
        return f"{self.gitlab_base_url.rstrip('/')}/api/v4"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
