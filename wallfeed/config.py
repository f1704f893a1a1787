"""
Runtime configuration for the wall feed client.

Values come from the process environment first and then from the .env file
located in the project root.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root
BASE_DIR = Path(__file__).resolve().parents[1]

# Absolute path to .env
ENV_PATH = BASE_DIR / ".env"

# Load .env defaults without overriding variables already exported by the shell
load_dotenv(dotenv_path=ENV_PATH, override=False)


class Settings(BaseSettings):
    api_base_url: str = Field(default="http://localhost:8000/api/wall", alias="WALL_API_BASE_URL")
    api_token: str | None = Field(default=None, alias="WALL_API_TOKEN")
    api_timeout: float = Field(default=10.0, alias="WALL_API_TIMEOUT")

    page_size: int = Field(default=10, ge=1, alias="WALL_PAGE_SIZE")

    # Persistent local store (reaction ledger)
    state_dir: Path = Field(default=BASE_DIR / ".wall_state", alias="WALL_STATE_DIR")
    ledger_key: str = Field(default="reaction_ledger", alias="WALL_LEDGER_KEY")

    temp_id_prefix: str = Field(default="tmp-", min_length=1, alias="WALL_TEMP_ID_PREFIX")

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
