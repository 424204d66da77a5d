"""
Configuration management using Pydantic settings.
Loads environment variables for Shopify API access, Supabase storage and the fee automation worker.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Application Configuration
    app_environment: str = "development"
    log_level: str = "INFO"

    # Supabase Configuration (leave empty to use in-memory stores)
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Shopify Configuration
    shopify_api_version: str = "2024-01"
    shopify_request_timeout_seconds: float = 30.0
    webhook_base_url: str = ""  # Public base URL used when registering webhooks

    # Retry Configuration for Shopify Admin API calls
    shopify_max_retry_attempts: int = 3
    retry_backoff_multiplier: float = 2.0
    retry_initial_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0

    # Security
    token_encryption_key: str = ""  # 44-char Fernet key; empty disables encryption at rest
    admin_tokens: str = ""  # "token:tenant_id,..." used when Supabase Auth is not configured

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def supabase_enabled(self) -> bool:
        """True when both Supabase URL and service key are configured."""
        return bool(self.supabase_url and self.supabase_service_key)


# Global settings instance
settings = Settings()
