"""Application configuration loaded from environment variables."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """
    Centralised settings — no hardcoded values anywhere else.

    Each field is read from the environment variable of the same name in
    upper case (GOOGLE_API_KEY, MAX_TURN_CHARS, ...) or from .env.
    """

    # Google AI
    google_api_key: str = ""
    gemini_model: str = "gemini-1.5-pro"

    # Per-agent generation options (issue agent uses provider defaults)
    faq_temperature: float = 0.7
    faq_max_output_tokens: int = 800

    # Routing: "unconditional" sends all text to the FAQ agent,
    # "keyword" requires a tenancy keyword before doing so.
    router_policy: Literal["unconditional", "keyword"] = "unconditional"

    # Request bounds
    max_history_turns: int = 20
    max_turn_chars: int = 4000
    max_image_bytes: int = 10 * 1024 * 1024

    # CORS
    allowed_origins: str = "http://localhost:3000"

    # App
    app_env: str = "development"
    log_level: str = "INFO"

    # Derived
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()


settings = get_settings()
