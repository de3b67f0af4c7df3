"""
Registry Configuration Management
Centralized settings using Pydantic Settings with environment variable support.

ENVIRONMENT VARIABLES REFERENCE
===============================

All settings can be configured via environment variables (uppercase, underscore-separated).
Example: `storage_backend` -> `STORAGE_BACKEND`

APPLICATION SETTINGS:
--------------------
ENVIRONMENT             - Runtime environment: development|staging|production (default: "development")
DEBUG                   - Enable debug mode (default: false)
LOG_LEVEL               - Logging level: DEBUG|INFO|WARNING|ERROR|CRITICAL (default: "INFO")
LOG_FORMAT              - json|text (default: "json")
EXPOSE_ERROR_DETAILS    - Expose detailed errors in responses (default: false, MUST be false in prod)

STORAGE:
--------
STORAGE_BACKEND         - memory|bigquery (default: "memory")
GCP_PROJECT_ID          - Google Cloud Project ID (default: "local-dev-project")
BIGQUERY_LOCATION       - BigQuery dataset location (default: "US")
REGISTRY_DATASET        - Dataset holding the registry tables (default: "registry")
SEED_FILE               - Optional YAML file loaded into the registry at startup

HIERARCHY ENGINE:
-----------------
CASCADE_MAX_RETRY_ATTEMPTS  - Attempts per descendant write during a cascade (default: 3)
CASCADE_RETRY_WAIT_SECONDS  - Wait between descendant write attempts (default: 2.0)
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables.
    Supports .env file loading in development.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================
    # Application Settings
    # ============================================
    app_name: str = Field(default="association-registry", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    expose_error_details: bool = Field(
        default=False,
        description="Expose detailed error messages in API responses. Should be False in production."
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    log_format: str = Field(default="json", pattern="^(json|text)$")

    # ============================================
    # API Configuration
    # ============================================
    api_prefix: str = Field(default="/api/v1/associations")
    enable_api_docs: bool = Field(default=True)
    cors_origins: List[str] = Field(default=["http://localhost:3000"])
    default_page_size: int = Field(default=100, ge=1, le=1000)
    max_page_size: int = Field(default=500, ge=1, le=5000)

    # ============================================
    # Storage Configuration
    # ============================================
    storage_backend: str = Field(default="memory", pattern="^(memory|bigquery)$")
    gcp_project_id: str = Field(default="local-dev-project", description="Google Cloud Project ID")
    bigquery_location: str = Field(default="US", description="BigQuery dataset location")
    registry_dataset: str = Field(default="registry")
    associations_table: str = Field(default="associations")
    clubs_table: str = Field(default="clubs")
    registrations_table: str = Field(default="association_registrations")
    bq_max_retry_attempts: int = Field(default=3, ge=1, le=10)
    seed_file: Optional[str] = Field(default=None, description="YAML seed data for the registry")

    # ============================================
    # Hierarchy Engine
    # ============================================
    cascade_max_retry_attempts: int = Field(default=3, ge=1, le=10)
    cascade_retry_wait_seconds: float = Field(default=2.0, ge=0.0, le=60.0)

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_no_wildcard(cls, v: List[str]) -> List[str]:
        """Wildcard origins are not allowed with credentialed CORS."""
        if "*" in v:
            raise ValueError("Wildcard '*' CORS origin is not allowed")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_table_ref(self, table_name: str) -> str:
        """Fully qualified BigQuery table reference for a registry table."""
        return f"{self.gcp_project_id}.{self.registry_dataset}.{table_name}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
