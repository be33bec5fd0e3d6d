"""Application settings using Pydantic."""
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    This uses Pydantic to:
    1. Load values from .env file
    2. Validate data types
    3. Provide defaults
    """

    # API Settings
    PROJECT_NAME: str = "SuperApp Assistant"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Environment & Logging
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # CORS - the mobile apps and panels call the API from many origins
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # Supabase
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None  # anon key
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None  # preferred server-side key for table access

    # Chat completion (Groq, OpenAI-compatible API)
    GROQ_API_KEY: Optional[str] = None
    GROQ_MODEL: str = "llama-3.3-70b-versatile"
    LLM_BASE_URL: str = "https://api.groq.com/openai/v1"
    LLM_MAX_TOKENS: int = 500
    LLM_TEMPERATURE: float = 0.3
    LLM_TIMEOUT_SECONDS: float = 60.0

    # Text-to-speech (OpenAI audio API)
    OPENAI_API_KEY: Optional[str] = None
    TTS_BASE_URL: str = "https://api.openai.com/v1"
    TTS_MODEL: str = "tts-1"
    TTS_HD_MODEL: str = "tts-1-hd"
    TTS_VOICE: str = "nova"

    # Dialogue tuning
    MAX_TOOL_ROUNDS: int = 3
    HISTORY_LIMIT: int = 8

    # Redis (per-session scratch context). Unset -> in-process store.
    REDIS_URL: Optional[str] = None
    SCRATCH_TTL_SECONDS: int = 3600

    # Load environment variables from .env; extra fields are ignored.
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_file_encoding='utf-8',
        extra="ignore"  # Ignore extra environment variables
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance.
    """
    return Settings()


# Create a single instance for easy importing
settings = get_settings()
