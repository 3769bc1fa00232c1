"""
Logging and Error Tracking

Logging for the GUI and the command line front end goes to three places
under the ``rfbr_loader`` logger: a rotating debug log, a rotating log of
errors only, and the console. ErrorTracker keeps the page-level problems of
one run so they can be summarized at the end.
"""

import logging
import logging.handlers
import os
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List


APP_NAME = "rfbr_loader"

FILE_FORMAT = '%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s'
CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'


def _rotating_handler(path: Path, level: int, max_mb: int, backups: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_mb * 1024 * 1024, backupCount=backups, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def initialize_logging(log_dir: str = "logs", level: int = logging.INFO) -> logging.Logger:
    """
    Attach the file and console handlers to the application logger.

    Calling it again only changes the console level; handlers are added once
    per process.

    Args:
        log_dir: Directory for the log files, created if missing
        level: Console logging level

    Returns:
        The ``rfbr_loader`` logger
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    app_logger = logging.getLogger(APP_NAME)
    app_logger.setLevel(logging.DEBUG)

    if app_logger.handlers:
        for handler in app_logger.handlers:
            if not isinstance(handler, logging.FileHandler):
                handler.setLevel(level)
        return app_logger

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))

    app_logger.addHandler(_rotating_handler(directory / f"{APP_NAME}.log", logging.DEBUG, 10, 5))
    app_logger.addHandler(_rotating_handler(directory / f"{APP_NAME}_errors.log", logging.ERROR, 5, 3))
    app_logger.addHandler(console)

    system = app_logger.getChild("system")
    system.info("=== RFBR Loader started ===")
    system.info(f"Python {sys.version.split()[0]} on {sys.platform}, cwd {os.getcwd()}")
    system.info(f"Logs in {directory.absolute()}")
    return app_logger


class ErrorTracker:
    """
    Collects the errors and warnings of a single run.

    Warnings carry the page they concern; their page indices make up the
    ``failed_pages`` entry of the summary.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.errors: List[Dict[str, Any]] = []
        self.warnings: List[Dict[str, Any]] = []

    @staticmethod
    def _describe(record_id: str, message: str, context: Optional[str], page_index: Optional[int]) -> str:
        text = f"[{record_id}] {message}"
        if context:
            text += f" (Context: {context})"
        if page_index is not None:
            text += f" (Page: {page_index})"
        return text

    def log_error(self,
                  error: BaseException,
                  context: str = None,
                  page_index: Optional[int] = None) -> str:
        """
        Record an unrecovered error and log it with its traceback.

        Returns:
            Error ID for tracking
        """
        now = datetime.now()
        error_id = f"ERR_{now:%Y%m%d_%H%M%S}_{len(self.errors):03d}"
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self.errors.append({
            'id': error_id,
            'timestamp': now,
            'type': type(error).__name__,
            'message': str(error),
            'context': context,
            'page_index': page_index,
            'traceback': tb,
        })

        self.logger.error(self._describe(error_id, f"{type(error).__name__}: {error}", context, page_index))
        self.logger.debug(f"[{error_id}] Full traceback:\n{tb}")
        return error_id

    def log_warning(self,
                    message: str,
                    context: str = None,
                    page_index: Optional[int] = None,
                    error: Optional[BaseException] = None) -> str:
        """Record a recovered problem, typically a page that failed to download."""
        now = datetime.now()
        warning_id = f"WARN_{now:%Y%m%d_%H%M%S}_{len(self.warnings):03d}"
        self.warnings.append({
            'id': warning_id,
            'timestamp': now,
            'type': type(error).__name__ if error else None,
            'message': message,
            'context': context,
            'page_index': page_index,
        })
        self.logger.warning(self._describe(warning_id, message, context, page_index))
        return warning_id

    def get_error_summary(self) -> Dict[str, Any]:
        return {
            'total_errors': len(self.errors),
            'total_warnings': len(self.warnings),
            'error_types': self._count_types(self.errors),
            'warning_types': self._count_types(self.warnings),
            'failed_pages': sorted(w['page_index'] for w in self.warnings if w['page_index'] is not None),
            'recent_errors': self.errors[-5:],
        }

    @staticmethod
    def _count_types(records: List[Dict[str, Any]]) -> Dict[str, int]:
        type_counts: Dict[str, int] = {}
        for record in records:
            if record['type']:
                type_counts[record['type']] = type_counts.get(record['type'], 0) + 1
        return type_counts
