"""
logging configuration for the goals engine

one "goals" logger with a stdout handler; modules get children via get_logger()
"""
import logging
import sys

from goals.config import settings

LOG_LEVEL = settings.log_level.upper()
logger = logging.getLogger("goals")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

# avoid duplicate lines through the root logger
logger.propagate = False


def get_logger(name: str = None) -> logging.Logger:
    """
    get a logger instance

    args:
        name: optional suffix (logger becomes "goals.<name>")

    returns:
        logger instance
    """
    if name:
        return logging.getLogger(f"goals.{name}")
    return logger
