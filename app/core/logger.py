import logging
import sys
from app.core.config import settings

def setup_logging():
    """
    Configure the shared calendar logger.

    Service modules log through child loggers (``carecalendar.<area>``) so a
    single handler on the parent covers all of them.
    """
    logger = logging.getLogger("carecalendar")
    logger.setLevel(settings.LOG_LEVEL)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.LOG_LEVEL)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(handler)

    return logger

def get_logger(area: str) -> logging.Logger:
    return logger.getChild(area)

logger = setup_logging()
