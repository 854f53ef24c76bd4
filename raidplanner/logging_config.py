import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] - %(message)s"

MAX_LOG_SIZE_BYTES = 10 * 1024 * 1024  # 10MB


def setup_logging(level: str = "INFO", log_dir: str | None = None, is_verbose: bool = False):
    """Configure the ``raidplanner`` logger hierarchy.

    A rotating file handler is added when *log_dir* is given; console output is
    always on, at DEBUG when verbose.
    """
    logger = logging.getLogger("raidplanner")
    logger.setLevel(logging.DEBUG if is_verbose else level.upper())

    if log_dir:
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "raidplanner.log"),
            maxBytes=MAX_LOG_SIZE_BYTES,
            backupCount=5,
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    return logger
