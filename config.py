# config.py - environment settings
import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite+aiosqlite:///./books.db", validation_alias="DATABASE_URL")

    storage_backend: Literal["local", "memory", "gcs"] = Field(default="local", validation_alias="STORAGE_BACKEND")
    bucket_dir: str = Field(default="./bucket", validation_alias="BUCKET_DIR")
    bucket_public_url: str = Field(default="http://localhost:8000/bucket", validation_alias="BUCKET_PUBLIC_URL")
    bucket_name: str = Field(default="", validation_alias="BUCKET_NAME")
    gcp_project: Optional[str] = Field(default=None, validation_alias="GCP_PROJECT")

    # Secondary index propagation
    index_backend: Literal["memory", "firestore"] = Field(default="memory", validation_alias="INDEX_BACKEND")
    index_collection: str = Field(default="books_index", validation_alias="INDEX_COLLECTION")
    index_propagation_delay: float = Field(default=0.5, ge=0, validation_alias="INDEX_PROPAGATION_DELAY")
    index_max_retries: int = Field(default=3, ge=0, validation_alias="INDEX_MAX_RETRIES")

    # Defaults for waiting on the index
    wait_max_attempts: int = Field(default=5, ge=1, validation_alias="WAIT_MAX_ATTEMPTS")
    wait_interval: float = Field(default=1.0, ge=0, validation_alias="WAIT_INTERVAL")

    lookup_book_details: bool = Field(default=False, validation_alias="LOOKUP_BOOK_DETAILS")
    google_books_url: str = Field(
        default="https://www.googleapis.com/books/v1/volumes", validation_alias="GOOGLE_BOOKS_URL"
    )
    http_timeout: float = Field(default=6.0, gt=0, validation_alias="HTTP_TIMEOUT")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
