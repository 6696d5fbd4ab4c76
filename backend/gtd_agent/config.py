from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = "postgresql+asyncpg://gtd:gtd@db:5432/gtd"
    redis_url: str = "redis://redis:6379"

    llm_base_url: str = "http://host.docker.internal:8000/v1"
    llm_model: str = "Qwen3-30B-A3B-Instruct-2507"
    llm_api_key: str = ""
    llm_temperature: float = 0.3
    llm_max_tokens: int = 4096
    llm_timeout_seconds: float = 30.0

    # Classifier (cheap model, deterministic sampling)
    classifier_model: str | None = None
    classifier_temperature: float = 0.0
    classifier_max_tokens: int = 1024

    # Conversation memory
    session_ttl_seconds: int = 3600
    recent_entities_cap: int = 5
    undo_stack_cap: int = 5
    pattern_hint_threshold: float = 0.3
    pattern_hint_limit: int = 10

    # Agent loop
    max_tool_rounds: int = 4
    max_batch_items: int = 10
    lookup_timeout_seconds: float = 10.0
    action_timeout_seconds: float = 15.0
    max_tool_output_chars: int = 6000

    default_timezone: str = "America/New_York"

    cors_origins: str = "http://localhost,http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
