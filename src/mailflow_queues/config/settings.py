"""
Module: settings.py
Description: Application configuration using pydantic-settings.

Configures queue administration settings from environment variables with
validation and defaults. Supports .env files for local development.
"""

import json
import re
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def split_app_names(value: str) -> List[str]:
    """
    Parse application names from a comma-separated string or a JSON list.

    Example:
        >>> split_app_names("app1, app2")
        ['app1', 'app2']
        >>> split_app_names('["app1", "app2"]')
        ['app1', 'app2']
    """
    text = value.strip()
    if text.startswith('['):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"app names JSON list is malformed: {e}") from e
        if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
            raise ValueError("app names JSON must be a list of strings")
        parts = parsed
    else:
        parts = text.split(',')
    return [part.strip() for part in parts if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application settings
    app_name: str = Field(default="Mailflow Queues API", description="Application name")
    app_version: str = Field(default="0.3.0", description="Application version")
    log_level: str = Field(default="INFO", description="Logging level")

    # AWS settings
    aws_region: str = Field(default="us-east-1", description="AWS region")
    aws_endpoint_url: Optional[str] = Field(
        default=None,
        description="Override endpoint for SQS-compatible brokers (LocalStack)"
    )
    stage: str = Field(default="dev", description="Deployment stage / environment name")

    # Topology settings
    app_names: str = Field(
        default="",
        description="Application names (comma-separated or a JSON list), one inbound queue each"
    )
    queue_name_prefix: str = Field(default="mailflow", description="Prefix of every queue name")
    inbound_visibility_timeout: int = Field(default=300, ge=0, le=43200)
    outbound_visibility_timeout: int = Field(default=3600, ge=0, le=43200)
    default_visibility_timeout: int = Field(default=3600, ge=0, le=43200)
    message_retention_seconds: int = Field(default=1209600, ge=60, le=1209600)
    receive_wait_time_seconds: int = Field(default=20, ge=0, le=20)
    max_receive_count: int = Field(default=3, ge=1, le=1000)

    # Inspection settings
    peek_visibility_timeout: int = Field(
        default=300,
        ge=0,
        le=43200,
        description="Visibility timeout applied to messages received for inspection"
    )
    peek_wait_time_seconds: int = Field(default=1, ge=0, le=20)
    default_message_limit: int = Field(default=10, ge=1, le=50)
    max_message_limit: int = Field(default=50, ge=1, le=50)

    # Mutation settings
    batch_max_concurrency: int = Field(default=5, ge=1, le=50)
    batch_max_items: int = Field(default=100, ge=1, le=1000)
    broker_call_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout in seconds for a single broker call"
    )

    # Live refresh is opt-in: every refresh of a message view consumes a receive
    auto_refresh_enabled: bool = Field(default=False)
    auto_refresh_interval_seconds: int = Field(default=30, ge=5, le=3600)

    # Metrics settings
    metrics_enabled: bool = Field(default=False)
    metrics_namespace: str = Field(default="Mailflow")

    @field_validator('app_names')
    @classmethod
    def validate_app_names(cls, v: str) -> str:
        """Validate the application name list."""
        for name in split_app_names(v):
            if not re.match(r'^[a-zA-Z0-9_-]+$', name):
                raise ValueError(
                    "app names must contain only letters, numbers, hyphens, and underscores"
                )
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @property
    def app_name_list(self) -> List[str]:
        """Application names parsed from ``app_names``."""
        return split_app_names(self.app_names)


# Global settings instance
settings = Settings()
