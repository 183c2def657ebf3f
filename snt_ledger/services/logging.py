"""Root logger setup shared by the API server and the job worker."""

import logging
import sys
from pathlib import Path

from snt_ledger.config import settings

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(name: str | None) -> int:
    """Map a LOG_LEVEL name to a logging constant; unknown names mean INFO."""
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_server_logging(log_file: str | None = None, level: str | None = None) -> None:
    """Send every logger to stdout and to ``log_file``.

    Both arguments default to the LOG_FILE and LOG_LEVEL settings. Existing
    root handlers are replaced so a second call does not duplicate output.
    """
    path = Path(log_file or settings.log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    log_level = resolve_level(level or settings.log_level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(path, encoding="utf-8")):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Engine echo is governed by DATABASE_ECHO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
