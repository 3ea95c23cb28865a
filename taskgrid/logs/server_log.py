import logging
import sys
from pathlib import Path
from typing import Optional

from taskgrid.core.config import Settings, get_settings

API_LOG_FILE = "api_requests.log"
API_LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def resolve_log_dir(settings: Optional[Settings] = None) -> Path:
    """Directory for the log files: settings.LOG_DIR, or the logs package itself"""
    settings = settings or get_settings()
    log_dir = Path(settings.LOG_DIR) if settings.LOG_DIR else Path(__file__).parent
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_logging(name: str = "api_logger", log_dir: Optional[Path] = None) -> logging.Logger:
    """File + stdout logger for requests and domain events"""
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    # Re-importing the module must not duplicate handlers
    if logger.handlers:
        return logger

    log_dir = log_dir or resolve_log_dir()
    formatter = logging.Formatter(API_LOG_FORMAT)

    file_handler = logging.FileHandler(log_dir / API_LOG_FILE, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


api_logger = setup_logging()
