"""Configuration settings for the application."""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 3000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Orchestration
    PROVIDER: str = "openai"  # Options: openai, lm_studio, openrouter, anthropic, tgi
    TEMPERATURE: float = 0.7
    MAX_ITERATIONS: int = 10

    # LLM Configuration
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    LM_STUDIO_BASE_URL: str = "http://localhost:1234/v1"
    LM_STUDIO_MODEL: str = "local-model"
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_MODEL: str = "deepseek/deepseek-chat"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"

    # Tool server
    TOOL_TRANSPORT: str = "mcp"  # Options: mcp, local
    TOOL_SERVER_COMMAND: str = "uv"
    TOOL_SERVER_ARGS: List[str] | None = None  # Overrides the SQLite server launch below
    SQLITE_SERVER_PATH: str = "servers/src/sqlite"
    SQLITE_DB_PATH: str = "~/test.db"

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
