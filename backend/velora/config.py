"""
Application configuration management using Pydantic Settings.
"""
from pydantic_settings import BaseSettings
from typing import Optional
from dotenv import load_dotenv
import os

load_dotenv()

class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Velora"
    APP_ENV: str = "development"
    DEBUG: bool = True
    PORT: int = 8000
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./velora.db")

    # Frontend
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Security (bearer tokens issued by the identity provider)
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me-in-production")
    JWT_ALGORITHM: str = "HS256"

    # Completion provider (any OpenAI-compatible endpoint, Groq by default)
    LLM_API_KEY: Optional[str] = os.getenv("LLM_API_KEY") or os.getenv("GROQ_API_KEY")
    LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "llama-3.3-70b-versatile")
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.9"))
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "1024"))
    LLM_TOP_P: float = float(os.getenv("LLM_TOP_P", "1.0"))
    LLM_TIMEOUT: Optional[float] = None  # None = no timeout, or set to seconds
    LLM_STREAM_USAGE: bool = True  # ask the provider to report usage in the final chunk

    # Chat relay
    CHAT_HISTORY_LIMIT: int = 20
    MESSAGE_RETENTION_DAYS: int = 90
    CHAT_CANCEL_ON_DISCONNECT: bool = False
    CHAT_SERIALIZE_PER_CONVERSATION: bool = False
    SHUTDOWN_TIMEOUT: float = 30.0

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
