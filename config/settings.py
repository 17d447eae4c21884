"""
Configuration Management - Centralized Settings
Consolidates all environment variable handling and application configuration
"""

import os
from typing import Dict, Any
from functools import lru_cache
from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables once at module level
load_dotenv()


class ProviderConfig(BaseModel):
    """
    Read-only Meta application configuration shared by every Graph API call.

    Built once from Settings and injected into the Graph client, so tests can
    construct one with fake credentials.
    """

    model_config = {"frozen": True}

    app_id: str
    app_secret: str
    redirect_uri: str = ""
    api_version: str = "v24.0"
    graph_base_url: str = "https://graph.facebook.com"
    timeout_seconds: float = 10.0
    public_base_url: str = ""

    @property
    def versioned_base_url(self) -> str:
        return f"{self.graph_base_url.rstrip('/')}/{self.api_version}"

    @property
    def app_access_token(self) -> str:
        """App token used for token introspection (debug_token)"""
        return f"{self.app_id}|{self.app_secret}"


class Settings:
    """
    Centralized configuration management for the channel connection service

    Provides type-safe access to environment variables with defaults
    and validation. Eliminates scattered getenv() calls across the codebase.
    """

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://localhost/restaurant_channels")

    # JWT Configuration (tokens are issued by the platform's auth service)
    JWT_SECRET: str = os.getenv("JWT_SECRET", "")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Meta App Configuration for WhatsApp Business and Messenger
    META_APP_ID: str = os.getenv("META_APP_ID", "")
    META_APP_SECRET: str = os.getenv("META_APP_SECRET", "")
    META_REDIRECT_URI: str = os.getenv("META_REDIRECT_URI", "http://localhost:5173/dashboard")
    META_GRAPH_API_VERSION: str = os.getenv("META_GRAPH_API_VERSION", "v24.0")
    META_GRAPH_BASE_URL: str = os.getenv("META_GRAPH_BASE_URL", "https://graph.facebook.com")
    PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))

    # Webhooks
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
    WEBHOOK_VERIFY_TOKEN: str = os.getenv("WEBHOOK_VERIFY_TOKEN", "")
    WEBHOOK_VERIFY_SIGNATURE: bool = os.getenv("WEBHOOK_VERIFY_SIGNATURE", "true").lower() == "true"

    # Token verification sweep
    VERIFY_INTERVAL_MINUTES: int = int(os.getenv("VERIFY_INTERVAL_MINUTES", "360"))
    VERIFY_MAX_AGE_HOURS: int = int(os.getenv("VERIFY_MAX_AGE_HOURS", "24"))

    # Application Configuration
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000")

    # Privacy & Security
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "")

    # Development & Debugging
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")

    @classmethod
    def validate_required_settings(cls) -> None:
        """
        Validate that all required configuration values are present
        Raises ValueError if any required setting is missing
        """
        required_settings = {
            "JWT_SECRET": cls.JWT_SECRET,
            "DATABASE_URL": cls.DATABASE_URL
        }

        missing_settings = [
            name for name, value in required_settings.items()
            if not value or value.strip() == ""
        ]

        if missing_settings:
            raise ValueError(
                f"❌ Missing required environment variables: {', '.join(missing_settings)}\n"
                f"Please check your .env file or environment configuration."
            )

    @classmethod
    def get_allowed_origins_list(cls) -> list[str]:
        """Get CORS allowed origins as a list"""
        return [origin.strip() for origin in cls.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @classmethod
    def get_meta_oauth_config(cls) -> Dict[str, str]:
        """Get Meta OAuth configuration as a dictionary"""
        return {
            "app_id": cls.META_APP_ID,
            "app_secret": cls.META_APP_SECRET,
            "redirect_uri": cls.META_REDIRECT_URI
        }

    @classmethod
    def get_provider_config(cls) -> ProviderConfig:
        """Build the immutable provider configuration for Graph API clients"""
        return ProviderConfig(
            **cls.get_meta_oauth_config(),
            api_version=cls.META_GRAPH_API_VERSION,
            graph_base_url=cls.META_GRAPH_BASE_URL,
            timeout_seconds=cls.PROVIDER_TIMEOUT_SECONDS,
            public_base_url=cls.PUBLIC_BASE_URL,
        )

    @classmethod
    def get_database_config(cls) -> Dict[str, Any]:
        """Get database configuration"""
        config: Dict[str, Any] = {
            "url": cls.DATABASE_URL,
            "echo": cls.DEBUG,
        }
        # SQLite (tests, local dev) uses a single-connection pool
        if not cls.DATABASE_URL.startswith("sqlite"):
            config.update({"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True})
        return config


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance

    Uses lru_cache to ensure settings are loaded only once
    and reused across the application.
    """
    settings = Settings()
    settings.validate_required_settings()
    return settings


# Convenience instance for direct import
settings = get_settings()

# Export commonly used configurations
__all__ = [
    "ProviderConfig",
    "Settings",
    "get_settings",
    "settings",
]
