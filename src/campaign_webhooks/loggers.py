"""
Logging configuration for the webhook monitor
"""
import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_LEVEL = logging.INFO


def setup_logger(
    name: str = "campaign_webhooks", log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure a named logger with console output and an optional log file

    Args:
        name: logger name
        log_file: path of the log file, or None to log to the console only

    Returns:
        the configured logger
    """
    logger = logging.getLogger(name)

    # Avoid adding handlers twice
    if logger.handlers:
        return logger

    log_level_str = os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, log_level_str.upper(), DEFAULT_LOG_LEVEL)
    logger.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


logger = setup_logger("campaign_webhooks", os.getenv("WEBHOOK_MONITOR_LOG_FILE"))
