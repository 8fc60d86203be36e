"""Application configuration with environment variable validation."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env and data files relative to the project root (2 levels up from this file)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"
_DATA_DIR = _PROJECT_ROOT / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase (only needed for the hosted backends)
    supabase_url: str = Field(default="", validation_alias="SUPABASE_URL")
    supabase_key: str = Field(default="", validation_alias="SUPABASE_KEY")

    # Backends
    inventory_backend: str = Field(default="memory", validation_alias="INVENTORY_BACKEND")
    fitment_source: str = Field(default="json", validation_alias="FITMENT_SOURCE")

    # Fitment snapshot files (output of scripts/build_vehicle_data.py)
    fitment_data_path: str = Field(
        default=str(_DATA_DIR / "vehicle_fitment.json"),
        validation_alias="FITMENT_DATA_PATH",
    )
    accessory_data_path: str = Field(
        default=str(_DATA_DIR / "vehicle_accessories.json"),
        validation_alias="ACCESSORY_DATA_PATH",
    )

    # Year/make/model option cache
    option_cache_maxsize: int = Field(default=512, validation_alias="OPTION_CACHE_MAXSIZE")
    option_cache_ttl: int = Field(default=3600, validation_alias="OPTION_CACHE_TTL")

    # API settings
    api_admin_key: str = Field(default="", validation_alias="API_ADMIN_KEY")
    allowed_origins: list[str] = Field(
        default=["*"],
        validation_alias="ALLOWED_ORIGINS",
    )
    rate_limit: str = Field(default="60/minute", validation_alias="RATE_LIMIT")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @property
    def cors_origins(self) -> list[str]:
        """Parse ALLOWED_ORIGINS from comma-separated string or return list."""
        if isinstance(self.allowed_origins, str):
            return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return self.allowed_origins

    @property
    def uses_supabase(self) -> bool:
        return self.inventory_backend == "supabase" or self.fitment_source == "supabase"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def validate_settings() -> None:
    """Validate that the settings needed by the selected backends are present."""
    settings = get_settings()
    errors = []

    if settings.inventory_backend not in ("memory", "supabase"):
        errors.append(f"INVENTORY_BACKEND must be 'memory' or 'supabase', got {settings.inventory_backend!r}")
    if settings.fitment_source not in ("json", "supabase"):
        errors.append(f"FITMENT_SOURCE must be 'json' or 'supabase', got {settings.fitment_source!r}")

    if settings.uses_supabase:
        if not settings.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not settings.supabase_key:
            errors.append("SUPABASE_KEY is required")

    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")
