"""
Logging setup for the local API process.
"""
import logging
import sys

from .config import settings


def setup_logging(level: str = None) -> None:
    """
    Configures the root logger to write to standard output.
    SQLAlchemy engine logging is left to the SQL_ECHO setting.
    """
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s - [%(levelname)s] - %(name)s - %(message)s",
        stream=sys.stdout,
    )
