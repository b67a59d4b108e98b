from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "CARTOPS"
    DEBUG: bool = True

    # Gemini (vision + voice interpretation)
    GEMINI_API_KEY: str | None = None
    GEMINI_API_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_VISION_MODEL: str = "gemini-2.0-flash"
    GEMINI_VOICE_MODEL: str = "gemini-2.5-flash"
    GEMINI_TIMEOUT_SECONDS: float = 30.0

    # Firestore
    PERSISTENCE_BACKEND: str = "firestore"  # "firestore" | "memory"
    FIREBASE_PROJECT_ID: str | None = None
    GOOGLE_APPLICATION_CREDENTIALS: str | None = None
    CARTS_COLLECTION: str = "carts"
    BOTTLE_CATALOG_COLLECTION: str = "alcohol_bottles"

    # Bottle control detection loop
    DETECTION_INTERVAL_SECONDS: float = 6.0
    RATE_LIMIT_BACKOFF_SECONDS: float = 60.0

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
