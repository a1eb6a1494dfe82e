import logging.config
import sys
from typing import Optional


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers = {
        "console": {
            "level": level,
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "stream": sys.stdout,
        },
    }
    if log_file:
        handlers["file"] = {
            "level": "WARNING",
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "filename": log_file,
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
        }

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            "sudoku_rogue": {
                "handlers": list(handlers),
                "level": level,
                "propagate": False,
            },
            # Telemetry is chatty; keep it out of the console unless debugging.
            "sudoku_rogue.telemetry": {
                "level": "DEBUG" if level == "DEBUG" else "WARNING",
            },
        },
    }

    logging.config.dictConfig(logging_config)
