"""
Configuration settings for the catalog loader
Loads from environment variables or a .env file
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
        populate_by_name=True,
    )

    # Environment
    environment: str = Field(default="development", alias="CATALOG_ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="CATALOG_LOG_LEVEL")

    # Database
    database_url: str = Field(default="sqlite:///./catalog_loader.db", alias="DATABASE_URL")
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW")

    # Chunk and assembled file storage
    storage_root: str = Field(default="./storage", alias="CATALOG_STORAGE_ROOT")

    # Uploads
    chunk_size: int = Field(default=1048576, alias="CATALOG_CHUNK_SIZE")  # 1MB
    upload_retention_hours: int = Field(default=24, alias="CATALOG_UPLOAD_RETENTION_HOURS")
    chunk_retry_attempts: int = Field(default=3, alias="CATALOG_CHUNK_RETRY_ATTEMPTS")
    chunk_retry_delay: float = Field(default=1.0, alias="CATALOG_CHUNK_RETRY_DELAY")  # seconds
    upload_workers: int = Field(default=4, alias="CATALOG_UPLOAD_WORKERS")

    # Import
    import_batch_size: int = Field(default=1000, alias="CATALOG_IMPORT_BATCH_SIZE")
    error_display_limit: int = Field(default=10, alias="CATALOG_ERROR_DISPLAY_LIMIT")

    # Celery
    celery_broker_url: str = Field(default="redis://localhost:6379/0", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(
        default="redis://localhost:6379/0", alias="CELERY_RESULT_BACKEND"
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
