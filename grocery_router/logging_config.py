"""Process-wide logging setup for the CLI and the HTTP server."""

import logging
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from grocery_router import config


def setup_logging(*, level: Optional[str] = None, json_format: Optional[bool] = None) -> None:
    """Configure the root logger with a JSON or plain-text formatter."""
    level = (level or config.LOG_LEVEL).upper()
    json_format = config.LOG_JSON if json_format is None else json_format

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(
            JsonFormatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
