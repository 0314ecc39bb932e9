import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Application
    app_name: str = os.getenv("APP_NAME", "Librarium")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_bool("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")

    # API
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database
    database_file: str = os.getenv("LIBRARIUM_DB_FILE", "librarium.db")
    database_busy_timeout: float = float(os.getenv("DATABASE_BUSY_TIMEOUT", "5.0"))

    # Circulation
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "7"))

    # Pagination
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "25"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: Optional[str] = os.getenv("LOG_FORMAT")


settings = Settings()

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Install the process-wide log format once; later calls only adjust the level."""
    resolved = (level or settings.log_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=settings.log_format or DEFAULT_LOG_FORMAT)
    root.setLevel(resolved)
