"""Configuration management for the Headshots service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the HEADSHOTS_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (HEADSHOTS_* prefix)
2. .env file in the project root
3. Default values defined in HeadshotsConfig

Example .env file:
    HEADSHOTS_REPLICATE_API_TOKEN=r8_...
    HEADSHOTS_SUPABASE_URL=https://xyzcompany.supabase.co
    HEADSHOTS_SUPABASE_ANON_KEY=eyJhbGciOi...
    HEADSHOTS_ADMIN_KEY=change-me

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Missing credentials do not prevent start-up: the generation client and data
store report them as upstream failures on first use, and ``GET /api/health``
shows which services are configured.

Usage Example
-------------
    from headshots.core.config import config

    print(config.default_model_id)
    print(config.server_port)
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Standard SDXL model used when a request names no LoRA model (or an unknown one).
DEFAULT_SDXL_MODEL = (
    "stability-ai/sdxl:c221b2b8ef527988fb59bf24a8b97c4561f1c671f73bd389f866bfb27c061316"
)


class HeadshotsConfig(BaseSettings):
    """Main configuration for the Headshots service.

    Values are loaded from environment variables with the HEADSHOTS_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Generation Settings:
        replicate_api_token : str
            Replicate API token. Empty means generation is unavailable.
        default_model_id : str
            Replicate model reference used when no LoRA model is selected.

    Data Store Settings:
        supabase_url : str
            Supabase project URL.
        supabase_anon_key : str
            Supabase anonymous (public) key. Row-level security applies.
        gallery_limit : int
            Maximum number of public images returned by the gallery.
        profile_chunk_size : int
            Number of owner ids per profile lookup query.

    Administration:
        admin_key : str
            Key required by the schema maintenance endpoint.

    Server Settings:
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Port for uvicorn (1024-65535).
        cors_origins : list[str]
            Origins allowed by the CORS middleware.
        log_level : Literal["DEBUG", "INFO", "WARNING", "ERROR"]
            Root log level configured by the CLI entry point.

    Examples
    --------
        >>> custom_config = HeadshotsConfig(
        ...     supabase_url="https://example.supabase.co",
        ...     supabase_anon_key="anon",
        ...     _env_file=None,
        ... )
        >>> custom_config.gallery_limit
        50
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HEADSHOTS_",
        case_sensitive=False,
    )

    # Generation
    replicate_api_token: str = Field(
        default="",
        description="Replicate API token",
    )
    default_model_id: str = Field(
        default=DEFAULT_SDXL_MODEL,
        description="Replicate model used when no LoRA model is selected",
    )

    # Data store
    supabase_url: str = Field(
        default="",
        description="Supabase project URL",
    )
    supabase_anon_key: str = Field(
        default="",
        description="Supabase anonymous key (row-level security applies)",
    )
    gallery_limit: int = Field(default=50, ge=1, le=500)
    profile_chunk_size: int = Field(default=10, ge=1, le=100)

    # Administration
    admin_key: str = Field(
        default="",
        description="Key required by /api/admin endpoints (empty disables them)",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=8000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    cors_origins: list[str] = Field(
        default=["*"],
        description="Origins allowed by the CORS middleware",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root log level",
    )

    @property
    def generation_configured(self) -> bool:
        """Whether a Replicate token is available."""
        return bool(self.replicate_api_token)

    @property
    def store_configured(self) -> bool:
        """Whether both Supabase credentials are available."""
        return bool(self.supabase_url and self.supabase_anon_key)


# Global configuration instance, loaded from HEADSHOTS_* variables and .env.
config = HeadshotsConfig()
