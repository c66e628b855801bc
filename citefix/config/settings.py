"""
Application settings and configuration management.

This module handles all environment variables, API keys, and application
configuration using Pydantic settings management for type safety and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached for performance.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    # API Keys
    you_api_key: Optional[SecretStr] = Field(default=None, alias="YOU_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")

    # Document rendering service
    document_service_url: str = Field(
        default="https://na1.fusion.foxit.com",
        alias="DOCUMENT_SERVICE_URL",
    )
    document_client_id: Optional[SecretStr] = Field(default=None, alias="DOCUMENT_CLIENT_ID")
    document_client_secret: Optional[SecretStr] = Field(default=None, alias="DOCUMENT_CLIENT_SECRET")
    document_template_path: Optional[Path] = Field(default=None, alias="DOCUMENT_TEMPLATE_PATH")
    report_watermark: Optional[str] = Field(default=None, alias="REPORT_WATERMARK")
    report_compression: bool = Field(default=True, alias="REPORT_COMPRESSION")

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Model Configuration
    claude_model: str = Field(
        default="claude-sonnet-4-20250514",
        alias="CLAUDE_MODEL"
    )
    claude_max_tokens: int = Field(default=4000, alias="CLAUDE_MAX_TOKENS")
    research_temperature: float = Field(default=0.7, alias="RESEARCH_TEMPERATURE")
    asset_temperature: float = Field(default=0.3, alias="ASSET_TEMPERATURE")

    # Concurrency, retries and timeouts
    max_concurrent_requests: int = Field(default=5, alias="MAX_CONCURRENT_REQUESTS")
    max_retries: int = Field(default=3, alias="MAX_RETRIES")
    search_timeout_seconds: float = Field(default=30.0, alias="SEARCH_TIMEOUT_SECONDS")
    fetch_timeout_seconds: float = Field(default=45.0, alias="FETCH_TIMEOUT_SECONDS")
    agent_timeout_seconds: float = Field(default=120.0, alias="AGENT_TIMEOUT_SECONDS")
    report_timeout_seconds: float = Field(default=90.0, alias="REPORT_TIMEOUT_SECONDS")

    # Output Settings
    output_dir: Path = Field(default=Path("outputs/reports"), alias="OUTPUT_DIR")
    job_store_dir: Path = Field(default=Path("outputs/jobs"), alias="JOB_STORE_DIR")
    log_dir: Path = Field(default=Path("logs"), alias="LOG_DIR")

    @field_validator("output_dir", "job_store_dir", "log_dir", mode="before")
    @classmethod
    def validate_directories(cls, v: str | Path) -> Path:
        """Ensure directories exist."""
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("anthropic_api_key", mode="before")
    @classmethod
    def validate_anthropic_key(cls, v: Optional[str]) -> Optional[str]:
        """Validate Anthropic API key format."""
        if not v:
            return None
        if not v.startswith("sk-"):
            raise ValueError("Invalid Anthropic API key format")
        return v

    @property
    def has_document_credentials(self) -> bool:
        return self.document_client_id is not None and self.document_client_secret is not None

    def missing_keys(self) -> list[str]:
        """Names of the credentials a full pipeline run needs but lacks."""
        missing = []
        if not self.you_api_key:
            missing.append("YOU_API_KEY")
        if not self.anthropic_api_key:
            missing.append("ANTHROPIC_API_KEY")
        return missing


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
