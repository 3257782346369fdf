import logging
from typing import Optional

from . import config

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def level_for(verbosity: int, default: Optional[str] = None) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    level = logging.getLevelName((default or config.LOG_LEVEL).upper())
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(verbosity: int = 0) -> None:
    level = level_for(verbosity)
    # StreamHandler defaults to stderr; stdout carries tables and JSON
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )
    logging.getLogger("tsunami").setLevel(level)
