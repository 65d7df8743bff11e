"""Agent configuration using pydantic-settings.

This module defines the PilotSettings class that reads configuration
from environment variables with the PILOT_ prefix. Only the GitHub token
and repository URL are required; everything else has a development
default or is optional.
"""

from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PilotSettings(BaseSettings):
    """Agent configuration from environment variables.

    All environment variables are prefixed with PILOT_ (e.g., PILOT_GITHUB_TOKEN).

    Required fields (must be set via environment variables):
    - github_token: GitHub API token used for clone, push and PR calls
    - github_repo_url: Repository the agent works on (HTTPS or SSH form)
    """

    model_config = SettingsConfigDict(
        env_prefix="PILOT_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    # API token for git transport and the REST API
    github_token: str

    # Repository the agent plans and implements against
    github_repo_url: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # HMAC secret for GitHub webhooks; verification is skipped when unset
    github_webhook_secret: Optional[str] = None

    # Handle that triggers the agent in PR comments (without the leading @)
    mention_handle: str = "linear-pilot"

    # Identity used for agent commits
    git_author_name: str = "Linear Pilot"
    git_author_email: str = "linear-pilot@users.noreply.github.com"

    # -------------------------------------------------------------------------
    # Linear Configuration
    # -------------------------------------------------------------------------
    linear_api_url: str = "https://api.linear.app/graphql"

    # HMAC secret for Linear webhooks; verification is skipped when unset
    linear_webhook_secret: Optional[str] = None

    # OAuth application credentials for the install flow
    linear_client_id: Optional[str] = None
    linear_client_secret: Optional[str] = None
    linear_redirect_uri: Optional[str] = None

    # Token used when no workspace installation is stored
    linear_access_token: Optional[str] = None

    # -------------------------------------------------------------------------
    # Agent Configuration
    # -------------------------------------------------------------------------
    # Path to the cursor-agent executable
    cursor_agent_path: str = str(Path.home() / ".local" / "bin" / "cursor-agent")

    # API key passed to cursor-agent via CURSOR_API_KEY
    cursor_api_key: Optional[str] = None

    # Maximum number of jobs running at once
    agent_concurrency: int = 2

    # Prefix for implementation branches
    branch_prefix: str = "linear-pilot"

    # -------------------------------------------------------------------------
    # Workspace Configuration
    # -------------------------------------------------------------------------
    # Directory holding one checkout per issue or pull request
    work_dir: str = "/tmp/linear-pilot-work"

    # Re-enqueue in_progress and reviewing issues at startup
    resume_on_startup: bool = True

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string; in-memory storage is used when unset
    database_url: Optional[str] = None

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 3000

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: str) -> str:
        """Validate that GitHub token is not empty."""
        if not v or not v.strip():
            raise ValueError("github_token cannot be empty")
        return v

    @field_validator("github_repo_url")
    @classmethod
    def validate_repo_url(cls, v: str) -> str:
        """Validate that the repository URL is an HTTPS or SSH GitHub URL."""
        if not v or not v.strip():
            raise ValueError("github_repo_url cannot be empty")
        if not v.startswith(("https://", "git@")):
            raise ValueError("github_repo_url must start with https:// or git@")
        return v.strip()

    @field_validator("github_base_url", "linear_api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Validate that API URLs use http or https."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("API URLs must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("mention_handle", "branch_prefix")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        v = v.strip().lstrip("@").strip("/")
        if not v:
            raise ValueError("value cannot be empty")
        return v

    @field_validator("agent_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Validate that at least one job can run."""
        if v < 1:
            raise ValueError("agent_concurrency must be at least 1")
        return v

    @field_validator("work_dir")
    @classmethod
    def validate_work_dir(cls, v: str) -> str:
        """Validate that the work directory is an absolute path."""
        if not Path(v).is_absolute():
            raise ValueError("work_dir must be an absolute path")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the database URL format when one is given."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def oauth_configured(self) -> bool:
        return bool(
            self.linear_client_id
            and self.linear_client_secret
            and self.linear_redirect_uri
        )


def get_settings() -> PilotSettings:
    """Create and return PilotSettings instance.

    Returns:
        PilotSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return PilotSettings()
