"""Configuration settings for the follow-up workflow."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    db_host: str = "localhost"
    db_port: int = 15432
    db_name: str = "followup"
    db_user: str = "agent"
    db_password: str = "agent"

    # Redis
    redis_url: str = "redis://localhost:16379/0"
    redis_queue_max_depth: int = 10000
    schedule_key: str = "schedule:deferred"

    # Scheduling (seconds)
    followup_delay_seconds: int = 15
    retry_delay_seconds: int = 10
    max_retries: int = 1
    poll_interval_seconds: float = 1.0

    # Generator (Workers AI REST API)
    ai_base_url: str = "https://api.cloudflare.com/client/v4"
    ai_account_id: str = ""
    ai_api_token: str = ""
    context_model: str = "@cf/meta/llama-3-8b-instruct"

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_prefix = "FOLLOWUP_"
        env_file = ".env"


# Global settings instance
settings = Settings()
