"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "actiongate"
    postgres_password: str = "actiongate_dev_password"
    postgres_db: str = "actiongate"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # API
    api_port: int = 8000
    api_host: str = "0.0.0.0"
    environment: str = "development"

    # Logging
    log_level: str = "INFO"

    # External record API (GitHub-compatible issues endpoint)
    external_api_url: str = "https://api.github.com"
    external_api_token: Optional[str] = None  # Required in non-dev
    external_timeout_seconds: float = 10.0
    external_user_agent: str = "actiongate/0.1.0"

    # Publishing
    initial_status_label: Optional[str] = "state:CREATED"  # Applied on create only

    # Policy
    policy_document_path: Optional[str] = None  # JSON document used by `seed`

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() in ("development", "dev")

    def validate_production_settings(self):
        """Validate settings for production environment."""
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if not self.external_api_token:
                raise ValueError(
                    "EXTERNAL_API_TOKEN is required outside development. "
                    "Publishing cannot authenticate against the external record API."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
