"""Structured JSON logging configuration using loguru.

Every component receives its own bound logger through ``get_logger`` instead
of patching a process-wide console. Two sinks are installed once at startup:

- a colorized, human-readable stderr sink
- a rotating JSON-lines file sink carrying bound context (``run_id``,
  ``listing_id``, ``error_type``) for operability
"""

import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from config.settings import GlobalConfig, get_config
from listing_harvester.exceptions import LoggingInitializationError

_RESERVED_EXTRA = frozenset({"serialized"})


def _json_serializer(record: dict[str, Any]) -> str:
    """Serialize a loguru record as one JSON line.

    Args:
        record: Loguru record dictionary containing log metadata.

    Returns:
        JSON-formatted string representation of the log record.
    """
    subset: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["extra"].get("module", record["name"]),
        "function": record["function"],
        "line": record["line"],
    }

    if record["exception"] is not None:
        exc_type = record["exception"].type
        exc_value = record["exception"].value
        subset["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "value": str(exc_value) if exc_value else None,
            "traceback": record["exception"].traceback is not None,
        }

    context = {
        k: v for k, v in record["extra"].items() if k not in _RESERVED_EXTRA and k != "module"
    }
    if context:
        subset["context"] = context

    return json.dumps(subset, default=str) + "\n"


def _attach_serialized(record: dict[str, Any]) -> bool:
    """Sink filter that precomputes the JSON line for the file sink."""
    record["extra"]["serialized"] = _json_serializer(record)
    return True


def _validate_log_directory(log_dir: Path) -> None:
    """Validate that the log directory exists and is writable.

    Raises:
        LoggingInitializationError: If directory creation or write test fails.
    """
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        probe = log_dir / ".write_test"
        probe.write_text("write_test")
        probe.unlink()
    except PermissionError as exc:
        raise LoggingInitializationError(
            log_dir=str(log_dir),
            reason=f"Permission denied: {exc}",
        ) from exc
    except OSError as exc:
        raise LoggingInitializationError(
            log_dir=str(log_dir),
            reason=f"OS error during directory validation: {exc}",
        ) from exc


def configure_logging(config: GlobalConfig | None = None) -> None:
    """Initialize the logging infrastructure.

    Must run once during bootstrap, before any component logs.

    Args:
        config: Optional GlobalConfig instance. If None, uses singleton.

    Raises:
        LoggingInitializationError: If log directory validation fails.
    """
    if config is None:
        config = get_config()

    logger.remove()
    _validate_log_directory(config.log_dir)

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[module]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    logger.configure(extra={"module": "listing_harvester"})

    logger.add(
        sys.stderr,
        format=console_format,
        level=config.log_level,
        colorize=True,
        backtrace=config.debug,
        diagnose=config.debug,
    )

    logger.add(
        str(config.log_dir / "harvester_{time:YYYY-MM-DD}.json"),
        format="{extra[serialized]}",
        level=config.log_level,
        rotation=config.log_rotation,
        retention=config.log_retention,
        compression="gz",
        serialize=False,
        filter=_attach_serialized,
    )

    logger.info(
        "Logging infrastructure initialized",
        app_name=config.app_name,
        environment=config.environment,
        log_level=config.log_level,
        log_dir=str(config.log_dir),
    )


def get_logger(name: str) -> "logger":
    """Get a logger bound with the component name.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("Endpoint matched", endpoint="/api/v3/StaysPdpSections")
    """
    return logger.bind(module=name)
