import os
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if it exists, for local development
# In production, environment variables should be set directly.
if os.path.exists(".env"):
    from dotenv import load_dotenv
    load_dotenv()


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./guidance.db"
    redis_url: str = "redis://localhost:6379/0"

    question_catalog_path: str = "assets/question_catalog.yml"

    # Quiet period after the last answer before a deferred save fires
    autosave_debounce_seconds: float = 2.0

    analysis_history_limit: int = 20
    artifact_cache_ttl_seconds: int = 3600

    # "rules" or "llm"
    recommendation_producer: str = "rules"
    llm_api_url: str = "https://api.groq.com/openai/v1"
    llm_api_key: Optional[str] = None
    llm_model: str = "llama-3.3-70b-versatile"
    llm_timeout_seconds: float = 60.0

    log_level: str = "INFO"
    # Comma separated
    cors_allow_origins: str = "*"

    model_config = SettingsConfigDict(extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


settings = Settings()
