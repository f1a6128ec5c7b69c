from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    # App Configuration
    APP_NAME: str = "Tutor Booking API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS
    ALLOWED_HOSTS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./tutoring.db")
    DATABASE_ECHO: bool = False

    # Holds
    HOLD_DURATION_MINUTES: int = 10

    # Schedule sync
    SYNC_HORIZON_DAYS: int = 21
    SLOT_DURATION_MINUTES: int = 60
    DEFAULT_TIMEZONE: str = "UTC"

    # Booking contract: "hold_then_book" or "direct"
    BOOKING_MODE: str = "hold_then_book"
    BOOKING_INITIAL_STATUS: str = "pending_payment"

    # Manually created slots
    MIN_SLOT_MINUTES: int = 15
    MAX_SLOT_MINUTES: int = 240

    # Slot listing
    SLOT_PAGE_SIZE: int = 50
    MAX_SLOT_PAGE_SIZE: int = 200

    # Background tasks
    TASK_INTERVAL_SECONDS: int = 300

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create settings instance
settings = Settings()

# Update allowed hosts for production
if os.getenv("ENVIRONMENT") == "production":
    settings.ALLOWED_HOSTS.extend([
        "https://your-frontend-domain.com",
    ])
