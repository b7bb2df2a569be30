"""Logging setup, per-document progress tracking and configuration dumps."""

import copy
import logging
import logging.handlers
import time
from typing import Any, Dict, List, Optional, Tuple

import colorlog

from .models import ProgressEvent, ProgressLevel

LOGGER_NAME = 'yuque_exporter'

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LEVEL_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Dependencies that log every request or lock at INFO/DEBUG
QUIET_LOGGERS = ('urllib3', 'filelock', 'PIL', 'docx')

# Config paths holding credentials; replaced before the config is logged
SECRET_PATHS: Tuple[Tuple[str, ...], ...] = (
    ('yuque', 'token'),
)
REDACTED = '***REDACTED***'


def resolve_level(verbosity: int = 0, level: Optional[str] = None) -> int:
    """
    Map ``-v`` counts or an explicit level name to a logging level.

    Raises:
        ValueError: If ``level`` is not a standard level name
    """
    if level:
        name = level.upper()
        if name not in LEVEL_COLORS:
            raise ValueError(f"Invalid log level '{level}'. Must be one of: {sorted(LEVEL_COLORS)}")
        return getattr(logging, name)
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def setup_logging(
    verbosity: int = 0,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Configure the ``yuque_exporter`` logger tree.

    Console output is colored with colorlog; ``log_file`` adds a rotating
    plain-text file. Calling this again replaces the previous handlers, so
    the CLI can reconfigure once the config file has been read.

    Args:
        verbosity: Count of ``-v`` flags (0=WARNING, 1=INFO, 2+=DEBUG)
        log_file: Optional path of a log file
        log_format: Record format, defaults to DEFAULT_FORMAT
        date_format: Timestamp format, defaults to DEFAULT_DATE_FORMAT
        level: Explicit level name, wins over ``verbosity``

    Returns:
        The package logger
    """
    log_level = resolve_level(verbosity, level)
    log_format = log_format or DEFAULT_FORMAT
    date_format = date_format or DEFAULT_DATE_FORMAT

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(log_level)
    console.setFormatter(colorlog.ColoredFormatter(
        fmt='%(log_color)s' + log_format,
        datefmt=date_format,
        log_colors=LEVEL_COLORS,
    ))
    logger.addHandler(console)

    if log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding='utf-8',
            )
        except OSError as e:
            logger.warning(f"Cannot open log file {log_file}: {e}")
        else:
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(fmt=log_format, datefmt=date_format))
            logger.addHandler(file_handler)
            logger.info(f"Writing {logging.getLevelName(log_level)} log to {log_file}")

    return logger


class ProgressTracker:
    """
    Counts document outcomes during an export and turns each one into a
    ProgressEvent for the caller's progress sink.

    Used as a context manager; leaving the block logs one summary line at a
    level matching the outcome (ERROR when everything failed).
    """

    def __init__(self, total: int, log_every: int = 10, logger: Optional[logging.Logger] = None):
        self.total = total
        self.log_every = max(log_every, 1)
        self.logger = logger or logging.getLogger(f'{LOGGER_NAME}.progress')
        self.succeeded = 0
        self.failed = 0
        self.failures: List[Tuple[str, str]] = []
        self.started: Optional[float] = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    def __enter__(self) -> 'ProgressTracker':
        self.started = time.monotonic()
        self.logger.info(f"Exporting {self.total} document(s)")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        elapsed = time.monotonic() - (self.started or time.monotonic())
        if self.failed and self.failed == self.total:
            log = self.logger.error
        elif self.failed:
            log = self.logger.warning
        else:
            log = self.logger.info
        log(f"Documents: {self.succeeded} exported, {self.failed} failed "
            f"of {self.total} in {elapsed:.1f}s")

    def document_exported(self, title: str) -> ProgressEvent:
        self.succeeded += 1
        self._checkpoint()
        return ProgressEvent(f"Exported document: {title}", ProgressLevel.SUCCESS)

    def document_failed(self, title: str, error: Any) -> ProgressEvent:
        self.failed += 1
        self.failures.append((title, str(error)))
        self.logger.info(f"[{self.processed}/{self.total}] failed: {title}")
        return ProgressEvent(f"Failed to export document {title}: {error}", ProgressLevel.ERROR)

    def _checkpoint(self) -> None:
        if self.processed % self.log_every == 0 or self.processed == self.total:
            self.logger.info(f"[{self.processed}/{self.total}] documents done")


def log_section(title: str) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("=" * 60)
    logger.info(f"  {title.upper()}")
    logger.info("=" * 60)


def redact_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``config`` with every SECRET_PATHS value replaced."""
    redacted = copy.deepcopy(config)
    for path in SECRET_PATHS:
        section = redacted
        for key in path[:-1]:
            section = section.get(key) if isinstance(section, dict) else None
        if isinstance(section, dict) and section.get(path[-1]):
            section[path[-1]] = REDACTED
    return redacted


def log_config(config: Dict[str, Any]) -> None:
    """Log the effective settings of an export run with credentials redacted."""
    logger = logging.getLogger(LOGGER_NAME)
    shown = redact_config(config)
    yuque = shown.get('yuque') or {}
    storage = shown.get('storage') or {}
    export = shown.get('export') or {}

    log_section("Configuration")
    logger.info(f"Source: {yuque.get('id', 'Not Set')} "
                f"({yuque.get('group_login', '?')}/{yuque.get('book_slug', '?')}) at {yuque.get('base_url')}")
    logger.info(f"Token: {yuque.get('token') or 'Not Set'}")
    logger.info(f"Data directory: {storage.get('root')} (lock timeout {storage.get('lock_timeout')}s)")
    logger.info(f"Formats: {', '.join(export.get('formats') or [])}")
    logger.info(f"Embed images: {export.get('embed_images')}, "
                f"{export.get('max_concurrent_downloads')} concurrent downloads")
    logger.info(f"Render timeout: {export.get('render_timeout')}s")


__all__ = [
    'LOGGER_NAME',
    'setup_logging',
    'resolve_level',
    'ProgressTracker',
    'log_section',
    'log_config',
    'redact_config',
]
