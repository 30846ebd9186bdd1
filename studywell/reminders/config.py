from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ReminderSettings(BaseSettings):
    # Service configuration
    SERVICE_NAME: str = "StudyWell FCM Server"
    SERVICE_HOST: str = "0.0.0.0"
    SERVICE_PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str = "sqlite:///./studywell_reminders.db"

    # Firebase (service account as inline JSON or a file path)
    FIREBASE_SERVICE_ACCOUNT: Optional[str] = None
    FCM_PROJECT_ID: Optional[str] = None
    PREFERENCES_COLLECTION: str = "notification_preferences"
    WATCH_START_DELAY_SECONDS: float = 2.0

    # Occurrence generation
    HORIZON_WEEKS: int = 8
    DEFAULT_TITLE: str = "Study Time! 📚"
    DEFAULT_MESSAGE: str = "Time to focus on your studies."
    ANDROID_CHANNEL_ID: str = "study_reminders"

    # Dispatch
    DISPATCH_INTERVAL_SECONDS: float = 60
    DISPATCH_WINDOW_SECONDS: int = 60
    DISPATCH_LOOKBACK_SECONDS: int = 300
    DISPATCH_BATCH_SIZE: int = 500
    DISPATCH_CONCURRENCY: int = 10
    DELIVERY_TIMEOUT_SECONDS: float = 10.0

    # Housekeeping
    RETENTION_DAYS: int = 7
    RETENTION_CRON_HOUR: int = 0  # UTC
    RETENTION_CRON_MINUTE: int = 0
    HEARTBEAT_INTERVAL_SECONDS: float = 60

    # Metrics
    METRICS_ENABLED: bool = True

    model_config = SettingsConfigDict(
        env_prefix="REMINDER_",
        env_file=".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> ReminderSettings:
    return ReminderSettings()


settings = get_settings()
