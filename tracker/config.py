"""
Configuration Management

Pydantic-settings based configuration for reply-by-email note ingestion.
All settings can be overridden via environment variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AUTO_REPLY_HEADERS: dict[str, list[str]] = {
    # "*" matches any value except "no" (RFC 3834)
    "auto-submitted": ["*"],
    "x-autoreply": ["*"],
    "x-autorespond": ["*"],
    "precedence": ["auto_reply"],
}

DEFAULT_COMMANDS: list[str] = [
    "close",
    "reopen",
    "title",
    "label",
    "unlabel",
    "due",
    "remove_due_date",
    "todo",
    "done",
    "subscribe",
    "unsubscribe",
    "wip",
]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables are prefixed with TRACKER_ and are case-insensitive.
    Example: TRACKER_INCOMING_EMAIL_ADDRESS=reply+%{key}@appmail.example.com

    Instances are frozen; the pipeline receives one explicitly and never
    reads process-wide state on its own.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRACKER_",
        env_file=[".env.local", ".env"],  # Try .env.local first
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # DynamoDB Configuration
    dynamodb_table_name: str = Field(
        default="IssueTracker",
        description="DynamoDB single table holding notifications, noteables and notes",
    )
    dynamodb_endpoint_url: str | None = Field(
        default=None,
        description="DynamoDB endpoint URL (for local development)",
    )

    # EventBridge Configuration
    eventbridge_bus_name: str = Field(
        default="tracker",
        description="EventBridge event bus name",
    )
    eventbridge_source: str = Field(
        default="tracker.lambdas.process_reply_email",
        description="Source stamped on NoteCreated events",
    )
    eventbridge_endpoint_url: str | None = Field(
        default=None,
        description="EventBridge endpoint URL (use 'mock' for local)",
    )

    # S3 Configuration
    s3_bucket_name: str = Field(
        default="tracker-uploads",
        description="S3 bucket for note attachments",
    )
    s3_uploads_prefix: str = Field(
        default="uploads/",
        description="Prefix for stored attachments",
    )
    s3_endpoint_url: str | None = Field(
        default=None,
        description="S3 endpoint URL (for local development)",
    )
    uploads_base_url: str = Field(
        default="/uploads",
        description="Public URL prefix that maps onto the uploads prefix",
    )

    # AWS Configuration
    aws_region: str = Field(
        default="us-west-2",
        description="AWS region",
    )

    # Incoming email
    incoming_email_address: str | None = Field(
        default="reply+%{key}@appmail.example.com",
        description="Reply address template; without %{key} sub-addressing is off",
    )
    host: str = Field(
        default="localhost",
        description="Host used in reply-<key>@<host> fallback message ids",
    )
    auto_reply_headers: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_AUTO_REPLY_HEADERS.items()},
        description="Header name -> values marking an automated message ('*' = any)",
    )
    quote_delimiters: list[str] = Field(
        default_factory=list,
        description="Extra regexes; the reply is cut at the first matching line",
    )
    disclaimer_patterns: list[str] = Field(
        default_factory=list,
        description="Extra regexes; matching lines are stripped from replies",
    )
    max_attachment_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Attachments above this size are skipped",
    )

    # Commands
    command_prefix: str = Field(
        default="/",
        description="Prefix marking a command line in a reply",
    )
    enabled_commands: list[str] = Field(
        default_factory=lambda: list(DEFAULT_COMMANDS),
        description="Command vocabulary recognised in replies",
    )

    # Application Configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    @property
    def sub_addressing_enabled(self) -> bool:
        """Whether the reply key travels in the recipient address."""
        return bool(self.incoming_email_address) and "%{key}" in self.incoming_email_address

    @property
    def dynamodb_config(self) -> dict:
        """DynamoDB client configuration."""
        config = {"region_name": self.aws_region}
        if self.dynamodb_endpoint_url and self.dynamodb_endpoint_url != "mock":
            config["endpoint_url"] = self.dynamodb_endpoint_url
        return config

    @property
    def s3_config(self) -> dict:
        """S3 client configuration."""
        config = {"region_name": self.aws_region}
        if self.s3_endpoint_url and self.s3_endpoint_url != "mock":
            config["endpoint_url"] = self.s3_endpoint_url
        return config

    @property
    def eventbridge_config(self) -> dict:
        """EventBridge client configuration."""
        config = {"region_name": self.aws_region}
        if self.eventbridge_endpoint_url and self.eventbridge_endpoint_url != "mock":
            config["endpoint_url"] = self.eventbridge_endpoint_url
        return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are loaded only once.
    Tests build their own instances with Settings(**overrides).
    """
    return Settings()
