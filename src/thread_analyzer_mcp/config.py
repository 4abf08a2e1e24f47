"""Analyzer settings read from the environment."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnalyzerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="THREAD_ANALYZER_", extra="ignore")

    log_level: str = Field("INFO", description="Logging level")
    fail_on_errors: bool = Field(
        False, description="Raise on unrecognized dump content and log fix-ups as warnings"
    )
    max_file_bytes: int = Field(10 * 1024 * 1024, description="Largest thread dump accepted", ge=1)
    porcelain: bool = Field(False, description="Render threads in machine mode by default")

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


@lru_cache()
def get_settings() -> AnalyzerSettings:
    return AnalyzerSettings()
