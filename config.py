"""Configuration management using Pydantic settings"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Firebase - falls back to application default credentials when unset
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None

    # Firestore collection names
    USERS_COLLECTION: str = "users"
    PLANS_COLLECTION: str = "subscriptionPlans"
    TEACHER_PLANS_COLLECTION: str = "teacherSubscriptionPlans"

    # Expiry monitor
    EXPIRY_CHECK_INTERVAL_SECONDS: float = 60.0
    EXPIRING_URGENT_DAYS: int = 3
    NOTIFICATION_DURATION_MS: int = 5000

    # Purchase fallback when a plan document carries no duration
    DEFAULT_PLAN_DURATION_DAYS: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator(
        "EXPIRY_CHECK_INTERVAL_SECONDS",
        "NOTIFICATION_DURATION_MS",
        "DEFAULT_PLAN_DURATION_DAYS",
    )
    @classmethod
    def _must_be_positive(cls, value):
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("EXPIRING_URGENT_DAYS")
    @classmethod
    def _urgent_band_within_week(cls, value: int) -> int:
        # The urgent band sits inside the 7 day "expiring soon" window
        if not 0 < value <= 7:
            raise ValueError("must be between 1 and 7")
        return value

    def get_monitor_info(self) -> dict:
        """Get expiry monitor configuration for diagnostics"""
        return {
            "check_interval_seconds": self.EXPIRY_CHECK_INTERVAL_SECONDS,
            "urgent_days": self.EXPIRING_URGENT_DAYS,
            "notification_duration_ms": self.NOTIFICATION_DURATION_MS,
        }


# Global settings instance
settings = Settings()
