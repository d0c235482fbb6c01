"""
Configuration management for the script compliance worker.
"""

from typing import Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Worker settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str = Field(default="sqlite:///./script_compliance.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")

    # AI Configuration
    openai_api_key: Optional[str] = Field(default=None)
    openai_router_model: str = Field(default="gpt-4.1-mini")
    openai_judge_model: str = Field(default="gpt-4.1")
    judge_timeout_seconds: float = Field(default=120.0, gt=0)
    router_timeout_seconds: float = Field(default=60.0, gt=0)
    judge_max_tokens: int = Field(default=4096, gt=0)

    # Prompt payload limits (characters)
    router_text_limit: int = Field(default=15_000, gt=0)
    judge_text_limit: int = Field(default=30_000, gt=0)
    repair_text_limit: int = Field(default=8_000, gt=0)

    # Worker loop
    worker_poll_interval: float = Field(default=2.0, gt=0)
    lexicon_refresh_seconds: float = Field(default=120.0, gt=0)

    # Chunk pipeline
    chunk_window_threshold: int = Field(default=10_000, gt=0)
    micro_window_size: int = Field(default=8_000, gt=0)
    micro_window_overlap: int = Field(default=800, ge=0)
    overlap_collapse_ratio: float = Field(default=0.7, gt=0, le=1)
    max_judge_articles: int = Field(default=25, gt=0)
    pipeline_logic_version: str = Field(default="v2-strict")

    # Aggregation
    top_findings_per_article: int = Field(default=10, gt=0)

    # Taxonomy override (defaults to the bundled file)
    taxonomy_path: Optional[str] = Field(default=None)

    # Developer overrides
    high_recall: bool = Field(
        default=False,
        validation_alias=AliasChoices("WORKER_HIGH_RECALL", "HIGH_RECALL", "high_recall"),
        description="Bypass the router and judge against every scannable article.",
    )
    deterministic_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("DETERMINISTIC_MODE", "deterministic_mode"),
        description="Force temperature 0 and a fixed seed where the job does not set them.",
    )

    @model_validator(mode="after")
    def check_window_geometry(self) -> "Settings":
        if self.micro_window_overlap >= self.micro_window_size:
            raise ValueError("micro_window_overlap must be smaller than micro_window_size")
        return self


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get worker settings."""
    return settings
