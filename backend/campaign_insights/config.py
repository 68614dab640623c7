from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Dict, List
from pathlib import Path
from dotenv import load_dotenv

# Explicitly load .env file from the backend directory
_backend_dir = Path(__file__).parent.parent
_env_file = _backend_dir / ".env"
load_dotenv(_env_file, override=False)


class Settings(BaseSettings):
    # Graph API
    graph_api_base: str = "https://graph.facebook.com"
    graph_api_version: str = "v24.0"
    entity_timeout_seconds: float = Field(default=10.0, description="Timeout for single-entity reads")
    list_timeout_seconds: float = Field(default=15.0, description="Timeout for list and insights reads")

    # Aggregation limits
    chunk_max_days: int = Field(default=14, description="Longest range sent to the insights endpoint in one call")
    zip_batch_size: int = Field(default=50, description="Postal codes per lookup request")
    hourly_row_limit: int = 168 * 3
    ads_page_limit: int = 500
    ad_sets_page_limit: int = 100

    # Presentation
    business_timezone: str = "UTC"

    # Caching
    cache_ttl_seconds: int = 15 * 60

    # Brand connections (brand id -> {"access_token": ..., "ad_account_id": ...})
    brand_connections: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    # App Settings
    log_level: str = Field(default="info", description="Logging level")

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def graph_base_url(self) -> str:
        return f"{self.graph_api_base.rstrip('/')}/{self.graph_api_version}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
