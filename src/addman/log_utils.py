import logging
import os
import queue
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Optional, Tuple

from rich.logging import RichHandler
from rich.markup import escape

from addman.constants import (
    DEBUG_LOG_FORMAT,
    INFO_LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    LOG_FILE_NAME,
    LOG_LEVEL_ENV_VAR,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)

# Global variable for the file handler to allow removal/reconfiguration if needed
_file_handler: Optional[RotatingFileHandler] = None


def _resolve_level(level_name: str) -> Optional[int]:
    level = getattr(logging, level_name.upper(), None)
    return level if isinstance(level, int) else None


def set_log_level(level_name: str) -> None:
    """
    Set the log level for the addman logger and reconfigure all attached handlers.

    If `level_name` is not a valid logging level name (e.g., "DEBUG", "INFO"), the function logs a warning and leaves the current configuration unchanged.

    Behavior:
    - Sets the logger's level and each handler's level to the resolved level.
    - RichHandler keeps a message-only formatter; file handlers switch between
      INFO_LOG_FORMAT and DEBUG_LOG_FORMAT depending on the level.

    Parameters:
        level_name (str): Case-insensitive name of the desired logging level (e.g., "debug", "INFO").
    """
    level = _resolve_level(level_name)
    if level is None:
        logger.warning(
            f"Invalid log level name: {escape(str(level_name))}. Using current level."
        )
        return

    logger.setLevel(level)

    for handler in logger.handlers:
        handler.setLevel(level)
        if isinstance(handler, RichHandler):
            formatter = logging.Formatter("%(message)s")
        elif level >= logging.INFO:
            formatter = logging.Formatter(INFO_LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        else:
            formatter = logging.Formatter(DEBUG_LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        handler.setFormatter(formatter)

    logger.debug(f"Log level set to {logging.getLevelName(level)}")


def add_file_logging(log_dir_path: Path, level_name: str = "INFO") -> None:
    """
    Enable rotating file logging for the addman logger.

    Creates the directory if necessary and attaches a RotatingFileHandler writing to
    `addman.log` inside the provided directory. The handler's level is taken
    from `level_name` (falls back to INFO for invalid names). Existing file logging
    configured by this module is removed and closed before reconfiguring.
    """
    global _file_handler
    if _file_handler and _file_handler in logger.handlers:
        logger.removeHandler(_file_handler)
        _file_handler.close()

    log_dir_path.mkdir(parents=True, exist_ok=True)
    log_file = log_dir_path / LOG_FILE_NAME

    file_log_level = _resolve_level(level_name)
    if file_log_level is None:
        logger.warning(
            f"Invalid file log level name: {escape(str(level_name))}. Defaulting to INFO."
        )
        file_log_level = logging.INFO
    if file_log_level >= logging.INFO:
        file_formatter = logging.Formatter(INFO_LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    else:
        file_formatter = logging.Formatter(DEBUG_LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    _file_handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    _file_handler.setFormatter(file_formatter)
    _file_handler.setLevel(file_log_level)

    logger.addHandler(_file_handler)
    logger.info(
        f"File logging enabled at {log_file} with level {logging.getLevelName(file_log_level)}"
    )


def _initialize_logger() -> None:
    """
    Initialize the addman logger with a console RichHandler and an initial log level.

    This removes any existing handlers, disables propagation to the root logger, and
    attaches a RichHandler configured for console output. The initial log level is read
    from the environment variable named by LOG_LEVEL_ENV_VAR (defaults to "INFO").
    """
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=True,
        log_time_format=LOG_DATE_FORMAT,
    )

    default_log_level = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO").upper()
    initial_level = _resolve_level(default_log_level)
    if initial_level is None:
        logger.warning(
            f"Invalid {LOG_LEVEL_ENV_VAR}={escape(default_log_level)}; defaulting to INFO."
        )
        initial_level = logging.INFO

    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    logger.setLevel(initial_level)
    console_handler.setLevel(initial_level)


_initialize_logger()


# sentinel marking the end of an add-on's log stream
_CLOSED = None


class AddonLog:
    """
    Buffered, add-on scoped log stream.

    Add-ons are updated concurrently but their output must reach the terminal
    as one contiguous block per add-on. The update coordinator writes lines
    here from a worker thread; the orchestrator, as the single consumer,
    drains the stream once the add-on's task has finished.

    Lines are prefixed with ``[project/short]`` and formatted eagerly, so the
    stream only carries finished ``(level, text)`` records.

    The stream is unbounded. Nothing drains it while the task is still running,
    so a producer that blocked on a full queue would never be released.
    """

    def __init__(self, project: str, short_name: str) -> None:
        self.project = project
        self.short_name = short_name
        self._records: "queue.Queue[Optional[Tuple[int, str]]]" = queue.Queue()
        self._closed = False
        self._drained = False

    @property
    def prefix(self) -> str:
        return (
            f"\\[[dim]{escape(self.project)}/[/dim]"
            f"[bold cyan]{escape(self.short_name)}[/bold cyan]]"
        )

    def _put(self, level: int, markup: str) -> None:
        if self._closed:
            raise RuntimeError(f"log stream for {self.short_name} is closed")
        self._records.put((level, f"{self.prefix} {markup}"))

    def log(self, level: int, msg: str, *args: Any) -> None:
        text = msg % args if args else msg
        self._put(level, escape(text))

    def debug(self, msg: str, *args: Any) -> None:
        self.log(logging.DEBUG, msg, *args)

    def info(self, msg: str, *args: Any) -> None:
        self.log(logging.INFO, msg, *args)

    def warning(self, msg: str, *args: Any) -> None:
        self.log(logging.WARNING, msg, *args)

    def error(self, msg: str, *args: Any) -> None:
        """Log an error line tagged with the add-on error marker."""
        text = msg % args if args else msg
        self._put(
            logging.ERROR, f"[bold red]error updating addon[/bold red] {escape(text)}"
        )

    def close(self) -> None:
        """Mark the end of the stream; further writes raise RuntimeError."""
        if not self._closed:
            self._closed = True
            self._records.put(_CLOSED)

    def records(self) -> Iterator[Tuple[int, str]]:
        """Yield records in production order until the stream is closed."""
        while True:
            record = self._records.get()
            if record is _CLOSED:
                return
            yield record

    def drain(self, target: Optional[logging.Logger] = None) -> int:
        """
        Close the stream and flush every buffered record to `target`.

        Draining is one-shot; later calls emit nothing.

        Returns:
            int: Number of records emitted.
        """
        if self._drained:
            return 0
        target = target or logger
        self.close()
        self._drained = True
        emitted = 0
        for level, text in self.records():
            target.log(level, text)
            emitted += 1
        return emitted
