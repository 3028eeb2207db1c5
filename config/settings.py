# ProcWise/config/settings.py

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
ENV_FILE_PATH = os.path.join(PROJECT_ROOT, '.env')


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=ENV_FILE_PATH,
        env_file_encoding='utf-8',
        extra="ignore",
    )

    # ERP master data store
    db_host: str = Field(default="localhost")
    db_name: str = Field(default="procwise")
    db_user: str = Field(default="procwise")
    db_password: Optional[str] = Field(default=None)
    db_port: int = Field(default=5432)
    master_data_table: str = Field(default="erp_master_data")
    default_client_id: str = Field(default="00000000-0000-0000-0000-000000000000")
    master_data_cache_enabled: bool = Field(default=False)
    master_data_cache_ttl: int = Field(default=3600)

    # Disambiguation oracle (OpenAI-compatible LM Studio server)
    lmstudio_base_url: str = Field(default="http://127.0.0.1:1234")
    lmstudio_timeout: int = Field(default=120)
    lmstudio_api_key: Optional[str] = Field(default=None)
    disambiguation_model: str = Field(default="microsoft/phi-4-reasoning-plus")
    disambiguation_temperature: float = Field(default=0.1)
    disambiguation_max_tokens: int = Field(default=200)

    # Layout analysis
    aws_region: str = Field(default="us-west-2")

    # Validation
    field_catalog_dataset: str = Field(default="list_match_fields")
    validation_max_workers: int = Field(
        default=4,
        description="Upper bound on fields validated in parallel for one document.",
    )

    @field_validator("validation_max_workers", mode="before")
    @classmethod
    def _coerce_workers(cls, value):
        """Treat blank or non-positive worker counts as a single worker."""

        if value in (None, ""):
            return 1
        try:
            workers = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("validation_max_workers must be an integer") from exc
        return max(1, workers)


try:
    settings = Settings()
except Exception as e:
    print(f"!!! FATAL ERROR: Could not load application settings from .env file: {e}")
    raise
