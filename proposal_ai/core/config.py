from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field
from dotenv import load_dotenv


class Settings(BaseSettings):
    PROJECT_NAME: str = "Proposal AI"
    VERSION: str = "1.0.0"
    API_PREFIX: str = Field("/api/ai", env="API_PREFIX")

    # Database
    STORE_BACKEND: str = Field("memory", env="STORE_BACKEND")  # memory | supabase
    SUPABASE_URL: Optional[str] = Field(None, env="SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = Field(None, env="SUPABASE_SERVICE_ROLE_KEY")
    SUPABASE_ANON_KEY: Optional[str] = Field(None, env="SUPABASE_ANON_KEY")

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8000",
        ]
    )

    # AI providers
    OPENAI_API_KEY: Optional[str] = Field(None, env="OPENAI_API_KEY")
    ANTHROPIC_API_KEY: Optional[str] = Field(None, env="ANTHROPIC_API_KEY")
    GOOGLE_AI_API_KEY: Optional[str] = Field(None, env="GOOGLE_AI_API_KEY")

    # Timeouts (seconds)
    COMPLETION_TIMEOUT_SECONDS: float = Field(25, env="COMPLETION_TIMEOUT_SECONDS")
    QUESTIONS_TIMEOUT_SECONDS: float = Field(25, env="QUESTIONS_TIMEOUT_SECONDS")
    ANALYSIS_TIMEOUT_SECONDS: float = Field(120, env="ANALYSIS_TIMEOUT_SECONDS")
    REPORT_TIMEOUT_SECONDS: float = Field(180, env="REPORT_TIMEOUT_SECONDS")

    # Session progress weights (percent, should sum to 100)
    PROGRESS_WEIGHT_SETUP: float = Field(10, env="PROGRESS_WEIGHT_SETUP")
    PROGRESS_WEIGHT_ANALYSIS: float = Field(40, env="PROGRESS_WEIGHT_ANALYSIS")
    PROGRESS_WEIGHT_QUESTIONS: float = Field(30, env="PROGRESS_WEIGHT_QUESTIONS")
    PROGRESS_WEIGHT_REPORT: float = Field(20, env="PROGRESS_WEIGHT_REPORT")

    # Question regeneration policy
    REGENERATE_STATIC_QUESTIONS: bool = Field(True, env="REGENERATE_STATIC_QUESTIONS")

    # Short-window rate limiting in front of provider calls
    RATE_LIMIT_ENABLED: bool = Field(True, env="RATE_LIMIT_ENABLED")

    # Context cache
    CONTEXT_CACHE_MAX_SIZE: int = Field(100, env="CONTEXT_CACHE_MAX_SIZE")
    CONTEXT_CACHE_TTL_SECONDS: Optional[float] = Field(None, env="CONTEXT_CACHE_TTL_SECONDS")

    # Logging
    LOG_LEVEL: str = Field("INFO", env="LOG_LEVEL")
    LOG_DIR: str = Field("logs", env="LOG_DIR")
    LOG_TO_FILE: bool = Field(False, env="LOG_TO_FILE")
    LOG_JSON: bool = Field(False, env="LOG_JSON")

    # Environment
    ENVIRONMENT: str = Field("development", env="ENVIRONMENT")
    DEBUG: bool = Field(True, env="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env


load_dotenv()

settings = Settings()
