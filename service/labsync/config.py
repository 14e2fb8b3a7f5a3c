from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Supabase (leave empty to run against the in-memory repository)
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # LLM provider: "openai" or "anthropic"
    llm_provider: str = "openai"
    llm_request_timeout: float = 60.0

    # OpenAI (up to three keys, rotated round-robin)
    openai_api_key: str = ""
    openai_api_key_2: str = ""
    openai_api_key_3: str = ""
    openai_model: str = "gpt-4o-mini"

    # Anthropic (Claude)
    anthropic_api_key: str = ""
    anthropic_api_key_2: str = ""
    anthropic_api_key_3: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"

    # Telegram
    telegram_webhook_secret: str = ""  # Optional: for webhook verification

    # Dashboard
    frontend_url: str = "http://localhost:3000"

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    # Background processor
    orchestrator_enabled: bool = True
    orchestrator_interval_seconds: float = 30.0
    orchestrator_batch_size: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def llm_api_keys(self) -> list[str]:
        """All configured keys for the active LLM provider, in priority order."""
        if self.llm_provider == "anthropic":
            return [self.anthropic_api_key, self.anthropic_api_key_2, self.anthropic_api_key_3]
        return [self.openai_api_key, self.openai_api_key_2, self.openai_api_key_3]

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
