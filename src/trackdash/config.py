"""Application configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TRACKDASH_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Application
    app_name: str = "Trackdash"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/trackdash.db"

    # Paths
    base_dir: Path = Path(__file__).parent.parent.parent
    carriers_dir: Path = Path(__file__).parent / "carriers"
    data_dir: Path = base_dir / "data"

    # Tracking provider
    tracking_provider: str = "intelipost"
    http_timeout_seconds: float = 30.0
    tracking_rate_limit: int = 60
    tracking_rate_window_seconds: float = 60.0

    # Sync
    sync_pacing_seconds: float = 0.5
    channel_freight_labels: list[str] = ["ColetasME2", "Shopee Xpress"]
    business_timezone: str = "America/Sao_Paulo"

    # Tray storefront
    tray_api_address: str = ""
    tray_access_token: str = ""
    storefront_rate_limit: int = 180
    storefront_rate_window_seconds: float = 60.0


settings = Settings()

# Ensure data directory exists
settings.data_dir.mkdir(parents=True, exist_ok=True)
