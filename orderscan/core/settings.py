from pydantic_settings import BaseSettings
from typing import List

MB = 1024 * 1024


class Settings(BaseSettings):
    # Core
    app_name: str = "Order Scan API"
    environment: str = "production"  # only "development" allows the insecure secret fallback

    # File token
    api_secret: str | None = None
    file_token_mode: str = "aead"  # "aead" (AES-GCM) or "hmac"
    file_token_ttl_seconds: int = 300

    # File cache
    file_cache_ttl_seconds: int = 300
    file_cache_max_item_bytes: int = 50 * MB
    file_cache_max_total_bytes: int = 100 * MB
    file_cache_max_items: int = 100
    file_cache_sweep_interval_seconds: float = 60
    file_cache_single_use: bool = False

    # CORS
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    cors_allow_methods: List[str] = ["GET", "POST", "OPTIONS"]
    cors_allow_headers: List[str] = ["*"]

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_default: str = "200/minute"

    # External API keys
    google_api_key: str | None = None

    # Gemini config
    gemini_model: str = "gemini-2.5-flash"
    gemini_timeout_seconds: float = 60
    gemini_max_retries: int = 3
    gemini_backoff_seconds: float = 2.0

    # Logging
    log_json: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"


settings = Settings()
