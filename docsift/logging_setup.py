"""Console logging for the CLI and the HTTP server. The library itself never configures handlers."""

import logging
import logging.config
import os
from typing import Optional, Union


def resolve_level(level: Optional[Union[str, int]] = None) -> int:
    """Explicit level, else ``LOG_LEVEL`` from the environment, else INFO."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "info")
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logging(level: Optional[Union[str, int]] = None) -> logging.Logger:
    loglevel = resolve_level(level)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": loglevel,
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": loglevel,
        },
    }
    logging.config.dictConfig(logging_config)

    # Provider SDKs are chatty at INFO
    quiet = logging.DEBUG if loglevel <= logging.DEBUG else logging.WARNING
    for name in ("httpx", "openai", "urllib3", "sentence_transformers"):
        logging.getLogger(name).setLevel(quiet)

    return logging.getLogger("docsift")
