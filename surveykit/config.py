import logging
import os
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
ENV_FILE = os.path.join(PACKAGE_DIR, "..", ".env")

FALLBACK_DATABASE_PATH = os.path.join(PACKAGE_DIR, "surveykit_fallback.db")

FALLBACK_ORIGINS = [
    "http://127.0.0.1:5173",
    "http://localhost:5173",
]


def parse_api_tokens(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``token:user_id`` pairs separated by commas."""
    tokens: Dict[str, str] = {}
    if not raw:
        return tokens
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        token, sep, user_id = pair.partition(":")
        if not sep or not token.strip() or not user_id.strip():
            logger.warning("Ignoring malformed SURVEY_API_TOKENS entry")
            continue
        tokens[token.strip()] = user_id.strip()
    return tokens


class Settings(BaseSettings):
    """Runtime configuration, read from the environment or the project .env file."""

    # Database
    database_url: Optional[str] = Field(default=None, validate_default=True)
    database_echo: bool = False
    create_tables: bool = True

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # bearer token -> user id, "token:user_id,token:user_id" in the environment
    api_tokens: Annotated[Dict[str, str], NoDecode] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("SURVEY_API_TOKENS", "api_tokens"),
    )
    allowed_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(FALLBACK_ORIGINS),
        validation_alias=AliasChoices("BACKEND_ALLOWED_ORIGINS", "allowed_origins"),
    )

    model_config = SettingsConfigDict(
        env_file=ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("database_url")
    @classmethod
    def fall_back_to_sqlite(cls, value: Optional[str]) -> str:
        if value:
            return value
        logger.warning(
            "DATABASE_URL not set, falling back to local SQLite database at %s",
            FALLBACK_DATABASE_PATH,
        )
        return f"sqlite+aiosqlite:///{FALLBACK_DATABASE_PATH}"

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("api_tokens", mode="before")
    @classmethod
    def split_api_tokens(cls, value):
        if value is None or isinstance(value, str):
            return parse_api_tokens(value)
        return value

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, value):
        if value is None or isinstance(value, str):
            origins = [origin.strip() for origin in (value or "").split(",") if origin.strip()]
            return origins or list(FALLBACK_ORIGINS)
        return value


def get_settings() -> Settings:
    return Settings()
