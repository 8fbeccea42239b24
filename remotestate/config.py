"""Service configuration."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Backends
    state_backend: str = "sql"  # sql | s3 | memory
    lock_backend: str = "sql"  # sql | dynamodb | redis | memory

    # SQL state store and locks
    database_url: str = "sqlite:///remotestate.db"

    # S3 state store
    s3_bucket: str = ""
    s3_prefix: str = "states/"
    aws_region: str = "us-east-1"

    # DynamoDB locks
    dynamodb_table: str = "remotestate-lock"

    # Redis locks
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "remotestate:lock:"

    # Locking
    lock_ttl_seconds: float = 300.0
    sweep_interval_seconds: float = 30.0

    # History retention (None keeps every version)
    retain_versions: Optional[int] = None

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 1

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "REMOTESTATE_"
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()
