"""Configuration settings for the application."""

from typing import List

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class RelaySpec(BaseModel):
    """An outbound relay definition; ``{url}`` (raw) or ``{url_encoded}`` receive the target."""

    name: str
    template: str


DEFAULT_RELAYS: List[RelaySpec] = [
    RelaySpec(name="Direct", template="{url}"),
    RelaySpec(name="CodeTabs", template="https://api.codetabs.com/v1/proxy?quest={url_encoded}"),
    RelaySpec(name="AllOrigins (win)", template="https://api.allorigins.win/raw?url={url_encoded}"),
    RelaySpec(name="AllOrigins (cf)", template="https://api.allorigins.cf/raw?url={url_encoded}"),
    RelaySpec(name="CORSProxy.io", template="https://corsproxy.io/?url={url_encoded}"),
    RelaySpec(name="ThingProxy FB", template="https://thingproxy.freeboard.io/fetch/{url}"),
    RelaySpec(name="YACDN", template="https://yacdn.org/proxy/{url}"),
]


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Chat model configuration
    MODEL_PROVIDER: str = "openai"  # Options: openai, gemini, anthropic
    MODEL_NAME: str = "gpt-4.1-mini"
    OPENAI_API_KEY: str | None = None
    GEMINI_API_KEY: str | None = None
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    ANTHROPIC_API_KEY: str | None = None
    STREAMING: bool = False
    ENABLE_COT: bool = False
    WORKFLOW: str = "plan"  # Options: plan, chat

    # Outbound fetching
    SEARCH_ENGINE: str = "duckduckgo"  # Options: duckduckgo, google, bing
    RELAYS: List[RelaySpec] = DEFAULT_RELAYS
    FETCH_TIMEOUT: float = 30.0
    BLOCKED_DOMAINS: List[str] = []

    # Tool behaviour
    MAX_SEARCH_ATTEMPTS: int = 3
    MIN_SEARCH_RESULTS: int = 3
    READ_DEFAULT_LENGTH: int = 1122

    # Plan execution
    READS_PER_TERM: int = 3
    READ_CHUNK_SIZE: int = 2000
    READ_MAX_CHUNKS: int = 5
    READ_MAX_TOTAL: int = 10000
    SUMMARY_BUDGET: int = 5857  # chars per summarization request
    SUMMARIZATION_TIMEOUT: float = 88.0

    # Loop protection
    MAX_TOOL_CALL_REPEAT: int = 3
    MAX_TOOL_ROUNDS: int = 8

    # Optional JSONL transcript of finished turns
    TRANSCRIPT_PATH: str | None = None

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
