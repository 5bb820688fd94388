############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# settings.py: Application configuration and environment settings
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Application settings using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ECONOMY_SYSTEM_PROMPT_PREFIX = (
    "Additionally, you are a capable general assistant. Please feel free to "
    "answer questions on a wide range of topics. Do not restrict your "
    "helpfulness to just coding tasks."
)


def _get_version() -> str:
    """Read version from pyproject.toml (single source of truth)."""
    try:
        from importlib.metadata import version
        return version("chatbridge")
    except Exception:
        pass
    # Fallback: read pyproject.toml directly (works in dev without pip install)
    try:
        import tomllib
        toml_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        return data["project"]["version"]
    except Exception:
        return "0.0.0"


def _split_list(v):
    if isinstance(v, str):
        import json
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            return [item.strip() for item in v.split(",") if item.strip()]
    return v


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.prod"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "chatbridge"
    app_version: str = Field(default_factory=_get_version)
    debug: bool = False
    reload: bool = False

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./chatbridge.db")
    database_echo: bool = False

    # Security
    secret_key: str = Field(default="dev-secret-key-change-in-production")
    session_cookie_name: str = "chatbridge_session"
    session_cookie_secure: bool = False
    session_max_age: int = 86400 * 7  # 7 days

    # Upstream provider (Responses-style API)
    upstream_base_url: str = "https://zenmux.ai/api/v1"
    upstream_api_key: Optional[str] = None
    upstream_timeout: int = 300

    # Model naming and personas
    default_provider_namespace: str = "volcengine"
    economy_system_prompt_prefix: str = ECONOMY_SYSTEM_PROMPT_PREFIX

    # Image resolution
    default_image_mime_type: str = "image/jpeg"
    image_allowed_domains: List[str] = [
        "blob.vercel-storage.com",
        "public.blob.vercel-storage.com",
    ]
    image_max_bytes: int = 10 * 1024 * 1024
    image_fetch_timeout: float = 10.0
    image_fetch_concurrency: int = Field(default=4, ge=1, le=32)
    forward_thought_signature: bool = False

    # Request handling
    max_request_bytes: int = 2_000_000
    chat_rate_limit: int = 30
    chat_rate_window_seconds: int = 60
    reminder_timezone: str = "Asia/Shanghai"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    @field_validator("cors_origins", "image_allowed_domains", mode="before")
    @classmethod
    def parse_list(cls, v):
        """Parse list settings from a JSON string, comma list, or list."""
        return _split_list(v)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
