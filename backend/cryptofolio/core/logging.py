"""
Logging configuration for the Cryptofolio backend.

One stdout handler on the root logger; library loggers that are chatty at
INFO (HTTP client, Redis, SQL engine) are held at WARNING unless SQL echo
is explicitly requested.
"""

import logging
import sys
from typing import Optional

from cryptofolio.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("httpx", "httpcore", "redis", "aiosqlite", "asyncio")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure application logging (idempotent)."""
    level_name = (level or settings.LOG_LEVEL).upper()

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # create_async_engine(echo=True) already logs statements itself
    sql_level = logging.INFO if settings.DB_ECHO else logging.WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(sql_level)
