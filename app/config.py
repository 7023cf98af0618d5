"""Application configuration models."""

from __future__ import annotations

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .patterns import (
    DEFAULT_ANIME_PATTERNS,
    DEFAULT_MANGA_PATTERNS,
    RecognitionPatterns,
    load_recognition_patterns,
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file.

    A single instance is built at start-up and handed to the components that
    need it. The update delay may change at runtime; assignments are validated.
    """

    app_name: str = Field(default="Fubuki", alias="APP_NAME")
    server_host: str = Field(default="127.0.0.1", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    anilist_api_url: HttpUrl = Field(
        default="https://graphql.anilist.co", alias="ANILIST_API_URL"
    )
    anilist_token: str | None = Field(default=None, alias="ANILIST_TOKEN")
    anilist_max_retries: int = Field(
        default=5, alias="ANILIST_MAX_RETRIES", ge=1, le=20
    )
    anilist_retry_after_seconds: int = Field(
        default=60, alias="ANILIST_RETRY_AFTER", ge=0, le=3_600
    )

    update_delay_seconds: int = Field(default=5, alias="UPDATE_DELAY", ge=0)
    detect_interval_seconds: float = Field(
        default=2.0, alias="DETECT_INTERVAL", gt=0, le=3_600
    )

    anime_patterns: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_ANIME_PATTERNS, alias="ANIME_PATTERNS"
    )
    manga_patterns: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_MANGA_PATTERNS, alias="MANGA_PATTERNS"
    )
    recognition_file: Path | None = Field(default=None, alias="RECOGNITION_FILE")
    recognition_custom_file: Path | None = Field(
        default=None, alias="RECOGNITION_CUSTOM_FILE"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("anilist_token", mode="before")
    @classmethod
    def _strip_token(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("anime_patterns", "manga_patterns", mode="before")
    @classmethod
    def _parse_patterns(cls, value: object) -> tuple[str, ...]:
        """Accept a JSON array, newline separated text or an iterable."""

        if value is None:
            return ()
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                try:
                    decoded = json.loads(text)
                except ValueError as exc:
                    raise ValueError("Pattern list is not valid JSON") from exc
                raw_values = [str(part) for part in decoded]
            else:
                raw_values = text.splitlines()
        elif isinstance(value, Iterable):
            raw_values = [str(part) for part in value]
        else:
            raise TypeError("Patterns must be a string or iterable of strings")

        cleaned: list[str] = []
        for pattern in raw_values:
            if not pattern.strip():
                continue
            try:
                compiled = re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid recognition pattern {pattern!r}: {exc}") from exc
            if "title" not in compiled.groupindex:
                raise ValueError(
                    f"Recognition pattern {pattern!r} has no 'title' group"
                )
            if pattern not in cleaned:
                cleaned.append(pattern)
        return tuple(cleaned)

    def recognition_patterns(self) -> RecognitionPatterns:
        """Return the configured patterns merged with any recognition files."""

        return load_recognition_patterns(
            RecognitionPatterns(anime=self.anime_patterns, manga=self.manga_patterns),
            recognition_file=self.recognition_file,
            custom_file=self.recognition_custom_file,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        validate_assignment=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance for the process entry points."""

    return Settings()  # type: ignore[call-arg]
