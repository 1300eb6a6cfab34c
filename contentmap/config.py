"""Process-wide settings, resolved from the environment (``CONTENTMAP_*``) or ``.env``.

Per-run crawl and analysis policy lives in :mod:`contentmap.models.config`;
this module only holds deployment-level knobs.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # SQLite page store
    db_path: Path = Path(".contentmap") / "pages.sqlite"

    # Screenshots written by the browser renderer
    screenshot_dir: Path = Path(".contentmap") / "screenshots"

    user_agent: str = "Mozilla/5.0 (compatible; contentmap-bot/1.0)"
    request_timeout: float = 30.0

    # Refuse to fetch hosts resolving to private/loopback ranges
    block_private_addresses: bool = True

    model_config = SettingsConfigDict(
        env_prefix="CONTENTMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
