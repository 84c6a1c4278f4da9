"""Process environment settings using pydantic-settings."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class EnvironmentSettings(BaseSettings):
    """Values the CI environment provides to every run.

    Read once at startup and threaded explicitly into the pipeline
    configuration; nothing downstream reads ``os.environ`` for these.
    """
    log_level: str | None = Field(default=None, validation_alias="LOG_LEVEL")
    region: str | None = Field(default=None, validation_alias="AWS_DEFAULT_REGION")
    tool_version: str | None = Field(default=None, validation_alias="TF_VERSION")
    working_dir: str | None = Field(default=None, validation_alias="TF_WORKING_DIR")
    build_id: str | None = Field(default=None, validation_alias="BUILD_NUMBER")
    build_url: str | None = Field(default=None, validation_alias="BUILD_URL")
    job_name: str | None = Field(default=None, validation_alias="JOB_NAME")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }
