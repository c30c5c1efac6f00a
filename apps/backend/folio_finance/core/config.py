from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Folio Finance"
    ENV: str = "dev"

    # apps/backend/db.sqlite3 as an absolute path so the CWD does not matter
    _default_db_path = Path(__file__).resolve().parents[2] / "db.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    TIMEZONE: str = "America/Santiago"
    DEFAULT_CURRENCY: str = "CLP"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Seed / PII protection
    ENCRYPTION_KEY: str | None = None
    ADMIN_EMAIL: str | None = None
    ADMIN_PASSWORD: str | None = None
    ADMIN_NAME: str = "Super Admin"

    # Receipt scanning limits
    OCR_MAX_PER_HOUR: int = 15
    OCR_WINDOW_SECONDS: int = 3600
    OCR_MAX_IMAGE_CHARS: int = 7_000_000

    # Threat scoring
    THREAT_THRESHOLD: int = 50
    THREAT_DECAY_PER_MINUTE: int = 2
    THREAT_TTL_SECONDS: int = 1800

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="FOLIO_", case_sensitive=False)


settings = Settings()
