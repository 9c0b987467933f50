"""Relay configuration using pydantic-settings.

This module defines the RelaySettings class that reads configuration
from environment variables with the RELAY_ prefix. Webhook secrets, the
GitHub App identity and the database URL must be set for the relay to
start.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelaySettings(BaseSettings):
    """Relay configuration from environment variables.

    All environment variables are prefixed with RELAY_ (e.g., RELAY_GITHUB_APP_ID).

    Required fields (must be set via environment variables):
    - linear_webhook_secret: Secret for validating Linear webhook signatures
    - github_webhook_secret: Secret for validating GitHub webhook signatures
    - github_app_id: Numeric identifier of the GitHub App
    - github_app_private_key: PEM private key used to sign GitHub App JWTs
    - database_url: PostgreSQL connection string, or memory:// for local runs
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Linear Configuration
    # -------------------------------------------------------------------------
    # Secret for validating Linear-Signature headers
    linear_webhook_secret: str

    # OAuth client credentials, used to refresh workspace access tokens
    linear_client_id: str = ""
    linear_client_secret: str = ""

    # GraphQL endpoint of the Linear API
    linear_api_url: str = "https://api.linear.app/graphql"

    # OAuth token endpoint used for refresh grants
    linear_token_url: str = "https://api.linear.app/oauth/token"

    # Tokens expiring within this window are refreshed before use
    token_refresh_buffer_seconds: int = 300

    # Interval of the background refresh sweep
    token_refresh_interval_seconds: int = 1800

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    # Secret for validating X-Hub-Signature-256 headers
    github_webhook_secret: str

    # GitHub App identity
    github_app_id: str
    github_app_private_key: str

    # Public slug of the GitHub App, used for installation links
    github_app_slug: str = "linear-code-agent"

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # Base URL for links shown to users
    github_web_url: str = "https://github.com"

    # Workflow file dispatched for implementation requests
    workflow_file: str = "linear-agent.yml"

    # Timeout applied to outbound HTTP requests
    http_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string for correlation state
    database_url: str

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    # Host address to bind the server to
    host: str = "0.0.0.0"

    # Port number for the server
    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("linear_webhook_secret", "github_webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, v: str) -> str:
        """Validate that webhook secrets are not empty."""
        if not v or not v.strip():
            raise ValueError("webhook secrets cannot be empty")
        return v

    @field_validator("github_app_id")
    @classmethod
    def validate_app_id(cls, v: str) -> str:
        """Validate that the GitHub App id is numeric."""
        if not v or not v.strip().isdigit():
            raise ValueError("github_app_id must be a numeric string")
        return v.strip()

    @field_validator("github_app_private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        """Validate the private key and restore escaped newlines."""
        if not v or not v.strip():
            raise ValueError("github_app_private_key cannot be empty")
        # Keys passed through single-line env vars carry literal \n
        return v.replace("\\n", "\n")

    @field_validator(
        "linear_api_url", "linear_token_url", "github_base_url", "github_web_url"
    )
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that URLs use http or https."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate that database URL is not empty and has valid format."""
        if not v or not v.strip():
            raise ValueError("database_url cannot be empty")
        if not v.startswith(("postgresql://", "postgres://", "memory://")):
            raise ValueError(
                "database_url must start with postgresql://, postgres:// or memory://"
            )
        return v

    @field_validator(
        "token_refresh_buffer_seconds", "token_refresh_interval_seconds"
    )
    @classmethod
    def validate_positive_seconds(cls, v: int) -> int:
        """Validate that token timing values are positive."""
        if v < 1:
            raise ValueError("token timing values must be at least 1 second")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def uses_memory_store(self) -> bool:
        return self.database_url.startswith("memory://")


def get_settings() -> RelaySettings:
    """Create and return RelaySettings instance.

    Returns:
        RelaySettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return RelaySettings()
