"""
Configuration settings for the Mission Control backend.
Uses pydantic-settings for environment variable support.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional
import secrets
import os


def get_or_create_secret_key():
    """Get secret key from file or generate a new one."""
    secret_file = ".secret_key"
    if os.path.exists(secret_file):
        try:
            with open(secret_file, "r") as f:
                return f.read().strip()
        except OSError:
            pass

    key = secrets.token_urlsafe(32)
    try:
        with open(secret_file, "w") as f:
            f.write(key)
    except OSError:
        pass  # read-only fs, key lives for this process only

    return key


class Settings(BaseSettings):
    """Application configuration settings."""

    # Application
    APP_NAME: str = "Mission Control"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Database
    # resolved relative to this config file (backend/mission_control/config.py -> backend/mission_control.db)
    _BASE_DIR: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    DATABASE_URL: str = f"sqlite+aiosqlite:///{os.path.join(_BASE_DIR, 'mission_control.db')}"

    # JWT verification (tokens are issued by the external auth provider)
    SECRET_KEY: str = Field(default_factory=get_or_create_secret_key)
    ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None

    # Default LLM Settings
    DEFAULT_API_BASE: str = "https://api.openai.com/v1"
    DEFAULT_MODEL_ID: str = "gpt-4o-mini"
    OPENAI_API_KEY: Optional[str] = None
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MAX_TOKENS: int = 4096

    # Voice providers
    DEEPGRAM_API_KEY: Optional[str] = None
    ASSEMBLYAI_API_KEY: Optional[str] = None
    ELEVENLABS_API_KEY: Optional[str] = None
    PLAYHT_API_KEY: Optional[str] = None
    PLAYHT_USER_ID: Optional[str] = None
    ASSEMBLYAI_POLL_INTERVAL: float = 1.0
    ASSEMBLYAI_MAX_POLLS: int = 60
    VOICE_REQUEST_TIMEOUT: int = 120

    # Generated audio
    UPLOAD_DIR: str = os.path.join(_BASE_DIR, "uploads")

    # Edge Functions
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_ANON_KEY: str = ""
    EDGE_TIMEOUT: float = 30.0
    EDGE_MAX_RETRIES: int = 3
    EDGE_RETRY_DELAY: float = 1.0

    # Scheduler
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_POLL_INTERVAL: int = 60
    SCHEDULER_WEBHOOK_TIMEOUT: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
