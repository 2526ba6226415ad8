import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Store settings
    store_backend: str = os.getenv("LIBRARY_STORE", "sqlite").lower()  # sqlite | memory
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "5"))

    # Circulation rules
    loan_days: int = int(os.getenv("LOAN_DAYS", "14"))
    low_stock_threshold: int = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))

    # Caller-side retry policy for transaction conflicts
    transaction_max_attempts: int = int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "3"))
    transaction_retry_backoff: float = float(os.getenv("TRANSACTION_RETRY_BACKOFF", "0.05"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Circulation Console")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_bool("DEBUG")


settings = Settings()
