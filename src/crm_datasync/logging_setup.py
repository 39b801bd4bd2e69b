"""
Logging Setup - Console and append-only log file sinks

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/logging_setup.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  SUCCESS log level, console handler and a
                                file handler that never escalates write
                                failures.
-------------------------------------------------------------------------------

License: MIT
===============================================================================
"""

from typing import Optional
import logging
import sys

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

DEFAULT_LOG_FILE = "crm-datasync.log"
FILE_FORMAT = "%(asctime)s: %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(message)s"

PACKAGE_LOGGER = "crm_datasync"


class SafeFileHandler(logging.FileHandler):
    """Append-only file handler; failures to write the log are swallowed"""

    def __init__(self, filename: str, encoding: str = "utf-8"):
        super().__init__(filename, mode="a", encoding=encoding, delay=True)

    def emit(self, record: logging.LogRecord) -> None:
        # FileHandler opens the delayed stream outside its own error handling
        try:
            super().emit(record)
        except Exception:
            self.handleError(record)

    def handleError(self, record: logging.LogRecord) -> None:
        pass


def log_success(logger: logging.Logger, message: str, *args) -> None:
    """Log a message at SUCCESS level"""
    logger.log(SUCCESS, message, *args)


def configure_logging(log_file: Optional[str] = DEFAULT_LOG_FILE,
                      verbose: bool = False) -> logging.Logger:
    """
    Attach console and file handlers to the package logger.

    Calling this again replaces the handlers installed by a previous call.

    Args:
        log_file: Path of the append-only log file, or None for console only
        verbose: Emit DEBUG records to the console

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file:
        file_handler = SafeFileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger
