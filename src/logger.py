"""Logging setup shared by the decoder, parser and stream driver.

Log records are written as JSON lines through python-json-logger, to a
size-rotated file and, in development mode, to the console as well. Every module
logs through the one application logger created in ``config``.

Classes:
    LogManager: Builds and owns the application logger.
"""

import logging
import logging.handlers
import os

from pythonjsonlogger import json

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(funcName)s %(lineno)s %(message)s"


class LogManager:
    """Builds the application logger with JSON output.

    Attributes:
        logger (logging.Logger): The configured application logger.
        log_dir (str): Directory holding the rotated log files.
        formatter (json.JsonFormatter): Formatter shared by every handler.

    Note:
        Building a second manager for the same application name replaces the
        handlers of the first one instead of stacking duplicates.
    """

    logger: logging.Logger
    log_dir: str
    formatter: json.JsonFormatter

    def __init__(
        self,
        app_name: str,
        log_dir: str,
        level: int = logging.INFO,
        max_size: int = 5 * 1024 * 1024,  # 5MB
        backup_count: int = 3,
        development: bool = False,
    ) -> None:
        """Create the log directory and attach the handlers.

        Args:
            app_name: Logger name, also used for the log file name.
            log_dir: Directory for log files, ``~`` is expanded.
            level: Minimum level of emitted records.
            max_size: Size in bytes at which the file is rotated.
            backup_count: Number of rotated files kept.
            development: Also log to the console.

        Raises:
            AssertionError: If log_dir is empty.
            OSError: If the log directory cannot be created.
        """
        assert log_dir, "log_dir is required"

        self.log_dir = os.path.expanduser(log_dir)
        try:
            os.makedirs(self.log_dir, mode=0o755, exist_ok=True)
        except OSError as e:
            raise OSError(f"Failed to create log directory: {e}")

        self.logger = logging.getLogger(app_name)
        self.logger.setLevel(level)
        # records stop here, the root logger must not print them a second time
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self.formatter = json.JsonFormatter(
            fmt=LOG_FORMAT,
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "component",
                "funcName": "function",
                "lineno": "line",
            },
        )

        self._add_handler(
            logging.handlers.RotatingFileHandler(
                os.path.join(self.log_dir, f"{app_name}.log"),
                maxBytes=max_size,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )
        if development:
            self._add_handler(logging.StreamHandler())

    def _add_handler(self, handler: logging.Handler) -> None:
        handler.setFormatter(self.formatter)
        self.logger.addHandler(handler)
