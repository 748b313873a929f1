from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str

    # Application
    APP_NAME: str = "PTHN Registry"
    DEBUG: bool = False

    # Server
    # Default to 0.0.0.0 for development, use env var HOST in production
    HOST: str = "0.0.0.0"  # nosec: B104
    PORT: int = 8000

    LOW_MEMORY_MODE: bool = False  # Enable reduced pool sizes

    # Hospital number format: PT + YY + XXXX
    HN_PREFIX: str = "PT"
    HN_MAX_SEQUENCE: int = 9999  # 4-digit capacity per year

    # Registration protocol
    REGISTRATION_MAX_ATTEMPTS: int = 3  # Full-protocol attempts before giving up
    REGISTRATION_RETRY_DELAY: float = 0.05  # Initial delay in seconds, doubled per retry
    LOCK_TIMEOUT_MS: int = 5000  # Bounded wait on the counter row lock

    # Calendar year used for allocation is taken in the clinic's timezone
    CLINIC_TIMEZONE: str = "Asia/Bangkok"

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="ignore"
    )


settings = Settings()  # type: ignore
