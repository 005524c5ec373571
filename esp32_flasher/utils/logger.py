"""
Logging setup for the flasher.

The serial terminal owns stdout, so log records are rendered by rich on
stderr.  Interactive front-ends pass a higher ``console_level`` to keep the
screen readable while the optional log file still receives everything.
"""

import logging
import logging.config
import sys
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = '%(asctime)s %(name)-12s %(levelname)-8s [%(module)s:%(lineno)d] %(message)s'

# Libraries that log every request or loop event at INFO/DEBUG
CHATTY_LOGGERS = ("urllib3", "asyncio", "esptool", "httpx")


def _level(value: Union[str, int]) -> int:
    if isinstance(value, int):
        return value
    numeric = logging.getLevelName(str(value).upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Invalid log level: {value!r}")
    return numeric


def _console_handler() -> RichHandler:
    return RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )


def setup_logging(
        level: Union[str, int] = "INFO",
        log_file: Optional[str] = None,
        *,
        console_level: Optional[Union[str, int]] = None,
        max_bytes: int = 2_000_000,
        backup_count: int = 2,
        force: bool = False,
):
    """Configure the root logger.

    *level* applies to the root logger and the log file; *console_level*
    (defaults to *level*) filters what reaches stderr.  A second call is a
    no-op unless *force* is set.
    """
    root = logging.getLogger()
    if root.handlers and not force:
        return

    numeric_level = _level(level)
    numeric_console = _level(console_level) if console_level is not None else numeric_level

    handlers = {
        'console': {
            '()': _console_handler,
            'level': numeric_console,
            'formatter': 'console',
        },
    }
    if log_file:
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': numeric_level,
            'formatter': 'file',
            'filename': log_file,
            'maxBytes': max_bytes,
            'backupCount': backup_count,
            'encoding': 'utf-8',
        }

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            # RichHandler renders time and level itself
            'console': {'format': '%(message)s', 'datefmt': '[%X]'},
            'file': {'format': FILE_FORMAT, 'datefmt': '%Y-%m-%d %H:%M:%S'},
        },
        'handlers': handlers,
        'root': {'level': numeric_level, 'handlers': list(handlers)},
    })

    if numeric_level > logging.DEBUG:
        for name in CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    def _log_uncaught(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger("esp32_flasher").critical(
            "Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = _log_uncaught
