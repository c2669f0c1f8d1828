"""
Shared utilities for CLI commands.
"""

import json
import logging
from datetime import UTC, datetime

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(verbose: bool = False, level: str = "info", log_format: str = "text") -> None:
    """
    Configure logging for CLI.

    Logs go to stderr; stdout is reserved for command output.

    Args:
        verbose: If True, enable DEBUG level logging
        level: Configured log level name used when not verbose
        log_format: "text" for human-readable lines, "json" for one object per line
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))
    logging.basicConfig(level=log_level, handlers=[handler])

    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_query(pairs: tuple[str, ...]) -> dict[str, str]:
    """
    Parse ``key=value`` pairs from repeated --query options.

    Raises:
        ValueError: If a pair has no '='
    """
    query: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid query parameter '{pair}', expected key=value")
        query[key] = value
    return query
