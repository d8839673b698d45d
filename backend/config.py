"""
Configuration management for InsightStore backend
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""

    # Database (SQL backend, used when Supabase is not configured)
    database_url: str = ""

    # Server
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000

    model_config = SettingsConfigDict(
        extra="ignore",  # Ignore frontend VITE_* / NEXT_PUBLIC_* keys in .env
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # Environment
    python_env: str = "development"
    log_level: str = "INFO"

    # CORS
    cors_origins: list = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # OpenAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    extraction_temperature: float = 0.1
    extraction_max_tokens: int = 8192
    extraction_timeout: float = 120.0

    # Extraction retry policy: 5s -> 10s -> 20s between 4 attempts
    extraction_max_attempts: int = 4
    extraction_base_delay: float = 5.0
    extraction_max_delay: float = 20.0

    # Sample preparation
    min_sample_length: int = 10
    max_sample_length: int = 500

    # Review source
    reviews_per_tier: int = 100
    play_store_lang: str = "en"
    play_store_country: str = "us"

    # Review cache
    review_cache_ttl_hours: int = 24

    # Quota
    free_tier_limit: int = 5

    # Jobs
    diagnostic_max_length: int = 200
    progress_timeout_seconds: float = 30.0
    shutdown_grace_seconds: float = 120.0

    @property
    def use_supabase(self) -> bool:
        """True when Supabase credentials are present for the service role"""
        return bool(self.supabase_url and self.supabase_service_role_key)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
