"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Semantic Topic Atlas API"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./data/topic_atlas.db"
    openai_api_key: SecretStr | None = None
    openai_chat_model: str = "gpt-4.1-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_max_tokens: int = 8191
    label_temperature: float = 0.5
    label_sample_size: int = 10
    source_api_url: str | None = None
    source_api_key: SecretStr | None = None
    source_page_size: int = 100
    source_max_offset: int = 800
    source_request_delay: float = 0.5
    source_max_retries: int = 3
    source_retry_delay: float = 2.0
    source_timeout: float = 30.0
    ingest_batch_size: int = 100
    topic_target_cluster_size: int = 20
    topic_min_clusters: int = 5
    topic_max_clusters: int = 50
    kmeans_max_iterations: int = Field(default=100, ge=1)
    projection_scale: float = 50.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
