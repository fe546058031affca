"""Module: logger_setup.py

Date: 2026-10-19

Provides the ConfigureLogger class for applications embedding exifproxy.
Console output goes through DevOnlyFilter; optional rotating file handlers
collect errors and a full debug trace.
"""

import contextlib
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from exifproxy import config
from exifproxy.utils.logging.logger_helper import DevOnlyFilter


class ConfigureLogger:
    """Configures root logging from exifproxy.config.app settings.

    Calling it twice is harmless: handlers are only installed when the root
    logger has none.
    """

    def __init__(
        self,
        log_name: str = config.APP_NAME,
        log_dir: str | Path = "logs",
        console_level: str = config.LOG_CONSOLE_LEVEL,
        file_level: str = config.LOG_FILE_LEVEL,
        log_to_console: bool = config.LOG_TO_CONSOLE,
        log_to_file: bool = config.LOG_TO_FILE,
        debug_file: bool = config.LOG_DEBUG_FILE_ENABLED,
    ) -> None:
        """Initializes and configures the root logger.

        Args:
            log_name: Base name for the log files.
            log_dir: Directory to store log files.
            console_level: Level name for the console handler.
            file_level: Level name for the main file handler.
            log_to_console: Install a console handler.
            log_to_file: Install a rotating file handler.
            debug_file: Install an extra DEBUG rotating file handler.

        """
        self.logger = logging.getLogger()
        self.logger.setLevel(logging.DEBUG)  # handlers filter levels
        self.handlers: list[logging.Handler] = []

        if self.logger.hasHandlers():
            return

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_dir = Path(log_dir)

        if log_to_console:
            self._setup_console_handler(getattr(logging, console_level, logging.INFO))

        if log_to_file or debug_file:
            log_dir.mkdir(parents=True, exist_ok=True)

        if log_to_file:
            self._setup_file_handler(
                log_dir / f"{log_name}_{timestamp}.log",
                getattr(logging, file_level, logging.INFO),
                config.LOG_FILE_MAX_BYTES,
                config.LOG_FILE_BACKUP_COUNT,
            )

        if debug_file:
            self._setup_file_handler(
                log_dir / f"{log_name}_debug_{timestamp}.log",
                logging.DEBUG,
                config.LOG_DEBUG_FILE_MAX_BYTES,
                config.LOG_DEBUG_FILE_BACKUP_COUNT,
            )

    def _setup_console_handler(self, level: int) -> None:
        """Sets up console handler with UTF-8-safe formatting and DevOnlyFilter."""
        console_handler = logging.StreamHandler(sys.stdout)

        with contextlib.suppress(Exception):
            console_handler.stream.reconfigure(encoding="utf-8")

        console_handler.setLevel(level)
        console_handler.addFilter(DevOnlyFilter())
        console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        self._add(console_handler)

    def _setup_file_handler(
        self, path: Path, level: int, max_bytes: int, backup_count: int
    ) -> None:
        """Sets up file handler with rotating file output."""
        file_handler = RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(config.LOG_FORMAT, datefmt=config.LOG_DATE_FORMAT)
        )
        self._add(file_handler)

    def _add(self, handler: logging.Handler) -> None:
        self.logger.addHandler(handler)
        self.handlers.append(handler)

    def remove(self) -> None:
        """Detach and close the handlers this instance installed."""
        for handler in self.handlers:
            self.logger.removeHandler(handler)
            with contextlib.suppress(Exception):
                handler.close()
        self.handlers.clear()
