from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./autoflow.db"
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # "nova" uses Amazon Bedrock, "simulated" never leaves the process
    AI_PROVIDER: str = "nova"
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    NOVA_TEXT_MODEL: str = "us.amazon.nova-lite-v1:0"

    RESEND_API_KEY: str = ""
    SENDGRID_API_KEY: str = ""
    MAILGUN_API_KEY: str = ""
    MAILGUN_DOMAIN: str = ""
    DELIVERY_TIMEOUT_SECONDS: float = 15.0

    # wait_delay steps up to this many ms sleep in-process; longer ones are parked
    WAIT_INLINE_MAX_MS: int = 60_000
    RESUME_POLL_SECONDS: int = 15
    STUCK_EXECUTION_MINUTES: int = 30
    EXECUTION_HISTORY_LIMIT: int = 50

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
