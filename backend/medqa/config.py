from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Primary provider (Google Gemini). Missing key -> 500 at request time.
    gemini_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout: float = 10.0

    # Fallback provider (Hugging Face Inference API). Optional.
    hf_api_key: str = ""
    hf_model: str = "mistralai/Mistral-7B-Instruct-v0.2"
    hf_base_url: str = "https://api-inference.huggingface.co/models"
    # Longer timeout to ride out cold starts
    hf_timeout: float = 25.0

    # Cache
    cache_max_size: int = 1000

    # Input
    max_question_length: int = 2000

    # "development" exposes provider error details in 500 responses
    environment: str = "production"

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: list[str] = ["*"]
    rate_limit_ai: str = "30/minute"
    rate_limit_enabled: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def debug(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()
