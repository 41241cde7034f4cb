from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CALL_TASK = (
    "You are Bree's virtual agent. Call the recipient and ask about their "
    "business funding needs. Ask the following questions:\n"
    "1) I understand you're in the [industry] space. What are your current growth plans?\n"
    "2) What kind of funding or financial support are you currently looking for?\n"
    "3) What's your timeline for securing additional funding?\n"
    "4) What are the main challenges you're facing in your business right now?"
)

DEFAULT_VOICEMAIL_MESSAGE = (
    "Hi, this is Bree checking in about a short conversation to help with "
    "your financial goals. We'll try again soon!"
)


class Settings(BaseSettings):
    ENV: str = "dev"
    APP_NAME: str = "Lead Qualification Call Center"
    LOG_LEVEL: str = "INFO"

    # Batch persistence: "sql" keeps one JSON document per row, "file" keeps
    # one <batch_id>.json per batch under BATCH_DATA_DIR.
    BATCH_STORE_BACKEND: Literal["sql", "file"] = "sql"
    DATABASE_URL: str = "sqlite:///./app.db"
    BATCH_DATA_DIR: str = "./data"

    # Which call provider places and reports calls
    CALL_PROVIDER: Literal["bland", "twilio"] = "bland"

    # Bland AI config
    BLAND_API_KEY: Optional[str] = None
    BLAND_API_URL: str = "https://us.api.bland.ai/v1"
    BLAND_CALL_TASK: str = DEFAULT_CALL_TASK
    BLAND_VOICEMAIL_MESSAGE: str = DEFAULT_VOICEMAIL_MESSAGE

    # Twilio config
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None  # our Twilio caller ID
    TWILIO_VOICE_WEBHOOK_URL: Optional[str] = None

    # OpenAI qualification model.
    # This will happily read OPENAI_API_KEY or openai_api_key from the env.
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Score (1-5) at or above which a lead is qualified
    QUALIFICATION_THRESHOLD: float = 3.0

    # Every external call is bounded
    PROVIDER_TIMEOUT_SECONDS: float = 15.0
    QUALIFICATION_TIMEOUT_SECONDS: float = 60.0

    # Per-batch fan-out width against the provider / model
    MAX_CONCURRENT_CALLS: int = 8

    # Background polling of in-progress batches
    ENABLE_BACKGROUND_RECONCILIATION: bool = True
    RECONCILE_INTERVAL_SECONDS: int = 30

    CORS_ALLOW_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

_settings: Optional[Settings] = None

def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
