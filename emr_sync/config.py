from __future__ import annotations

import functools
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    api_key: str = ""

    environment: str = "development"
    log_level: str = "INFO"

    # Key material for the secret codec. ENCRYPTION_KEY wins over APP_SECRET.
    encryption_key: str = ""
    app_secret: str = ""
    allow_insecure_dev_key: bool = False

    cors_origins: str = "http://localhost:3000"

    emr_http_timeout_seconds: float = 15.0
    reachability_timeout_seconds: float = 5.0
    token_safety_margin_seconds: int = 300
    default_token_ttl_seconds: int = 3600

    mindbody_base_url: str = "https://api.mindbodyonline.com/public/v6"
    mindbody_default_site_id: str = "-99"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


@functools.lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance. Reads .env from the project root if present."""
    env_file = os.path.join(os.path.dirname(__file__), "..", ".env")
    if os.path.isfile(env_file):
        return Settings(_env_file=env_file)
    return Settings()
