import logging
import sys

from upload_engine.core.config import settings


def setup_logging() -> None:
    """
    Configure the root logger for the reference server and scripts.
    The library itself only creates module loggers.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL.upper())
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for logger_name in ["uvicorn", "uvicorn.error"]:
        logging.getLogger(logger_name).setLevel(settings.LOG_LEVEL.upper())
