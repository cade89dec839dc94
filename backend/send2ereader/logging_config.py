import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from .config import settings

LOG_DIR = str(settings.LOG_DIR)
LOG_FILE = os.path.join(LOG_DIR, "send2ereader.log")


def setup_logging():
    """
    Configures logging for the application.
    Outputs to console and a rotating file with a detailed format.
    Safe to call more than once: handlers are only added when missing.
    """
    os.makedirs(LOG_DIR, exist_ok=True)

    log_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(module)s - %(funcName)s - %(lineno)d - %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_formatter)

    # 5MB per file, 2 backups
    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=1024 * 1024 * 5, backupCount=2)
    file_handler.setFormatter(log_formatter)

    has_file_handler = any(isinstance(h, logging.FileHandler) for h in root_logger.handlers)
    if not has_file_handler:
        root_logger.addHandler(file_handler)
    else:
        file_handler.close()

    has_console_handler = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout
        for h in root_logger.handlers
    )
    if not has_console_handler:
        root_logger.addHandler(console_handler)

    logging.getLogger("send2ereader").setLevel(logging.INFO)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    # Requests are logged by our own middleware.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.info("Logging configured successfully (console and file).")
