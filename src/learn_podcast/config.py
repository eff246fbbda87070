"""Configuration helpers for the learn-podcast service."""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    anthropic_api_key: str | None = Field(None, alias="ANTHROPIC_API_KEY")

    research_model: str = Field(
        "claude-3-5-sonnet-20241022",
        description="Anthropic model that writes the research brief.",
    )
    research_temperature: float = Field(0.7, description="Research creativity.")
    research_max_tokens: int = Field(4000, description="Cap for the research brief.")

    story_model: str = Field(
        "gpt-4o", description="OpenAI model that narrates the story and its title."
    )
    story_temperature: float = Field(0.8, description="Story creativity.")
    story_max_tokens: int = Field(
        4000, description="Cap for the story; sized for a 2,500-3,000 word narrative."
    )
    title_temperature: float = Field(0.9, description="Title creativity.")
    title_max_tokens: int = Field(100, description="Cap for the title response.")

    questions_model: str = Field(
        "gpt-4o", description="OpenAI model that asks clarifying questions."
    )
    questions_temperature: float = Field(0.8)
    questions_max_tokens: int = Field(800)

    min_query_length: int = Field(
        10, description="Minimum stripped length of a /generate-story query."
    )
    min_topic_length: int = Field(
        20, description="Minimum stripped length of a /generate-questions topic."
    )
    words_per_minute: int = Field(
        200, description="Speaking rate used to estimate narration length."
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")


def get_settings() -> Settings:
    """Return a fresh settings instance (reads the environment each call)."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Install a basic root handler once; later calls only adjust the level."""
    resolved = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger().setLevel(resolved)
