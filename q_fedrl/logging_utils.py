"""Logging setup for scripts and experiments.

Library modules only create module loggers; handlers are installed here,
on the root logger, by whoever runs the code.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


class LevelFilter(logging.Filter):
    """Pass only records whose level name is in ``allowed_levels``."""

    def __init__(self, allowed_levels: Iterable[str]):
        super().__init__()
        self.allowed = {level.upper() for level in allowed_levels}

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelname.upper() in self.allowed


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    file_levels: Iterable[str] = ("INFO", "WARNING", "ERROR", "CRITICAL"),
) -> logging.Logger:
    """Install a console handler and optionally a UTF-8 file handler.

    Args:
        level: Console level.
        log_file: Path of the log file; no file logging when None.
        file_levels: Level names written to the file.

    Returns:
        The root logger.
    """
    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_levels = list(file_levels)
        file_handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        file_handler.setLevel(min(logging.getLevelName(l.upper()) for l in file_levels))
        file_handler.addFilter(LevelFilter(file_levels))
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        logger.info("Logging to %s", path)

    return root
