import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-30s | %(funcName)-20s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that flood DEBUG output
QUIET_LOGGERS = (
    'chromadb',
    'sentence_transformers',
    'sqlalchemy.engine',
    'aiosqlite',
    'httpx',
    'urllib3',
    'redis',
)


def setup_logging(
    debug_mode: bool = False,
    log_level: str = "INFO",
    log_dir: Optional[str] = "data/logs",
    log_file: str = "context_engine.log"
) -> None:
    """
    Configure root logging for the engine.

    Console output follows the requested level. When log_dir is set, a
    rotating file additionally captures everything at DEBUG.
    """
    level = logging.DEBUG if debug_mode else getattr(logging, log_level.upper(), logging.INFO)

    handlers = []

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    handlers.append(console)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            directory / log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )
        rotating.setLevel(logging.DEBUG)
        rotating.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        handlers.append(rotating)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if log_dir else level)
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured (console={logging.getLevelName(level)}, "
        f"file={'off' if not log_dir else directory / log_file})"
    )
