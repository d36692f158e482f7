"""
Logging setup for the settlement service.

Console output is colored by level unless JSON output is requested; an
optional rotating file receives the same records. Settlement flows log
through :func:`get_logger`, which stamps the transaction, account and
community a record belongs to.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import LoggingConfig, get_config

# Fields that SettlementLogger attaches to records, as JSON keys
CONTEXT_FIELDS = (
    "transaction_id",
    "account_id",
    "community_id",
    "tx_hash",
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
)

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "asyncio", "sqlalchemy", "web3", "urllib3", "aiosqlite")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with any settlement context as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ColorFormatter(logging.Formatter):
    """Console formatter that tints each line by level."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        text = super().format(record)
        return f"{color}{text}{self.RESET}" if color else text


def _build_handlers(config: LoggingConfig, log_file: Optional[str], json_format: bool) -> List[logging.Handler]:
    plain = JSONFormatter() if json_format else logging.Formatter(config.format, config.date_format)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(plain if json_format else ColorFormatter(config.format, config.date_format))
    handlers: List[logging.Handler] = [console]

    path = log_file or config.file_path
    if path:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            rotating = logging.handlers.RotatingFileHandler(
                path,
                maxBytes=config.max_file_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            logging.getLogger(__name__).warning(f"File logging disabled, cannot open {path}: {e}")
        else:
            rotating.setFormatter(plain)
            handlers.append(rotating)
    return handlers


def setup_logging(
    config: Optional[LoggingConfig] = None,
    log_file: Optional[str] = None,
    json_format: Optional[bool] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        config: Logging configuration, defaulting to the loaded one
        log_file: File path overriding ``config.file_path``
        json_format: Overrides ``config.json_format``
    """
    config = config or get_config().logging
    if json_format is None:
        json_format = config.json_format

    handlers = _build_handlers(config, log_file, json_format)
    for handler in handlers:
        handler.setLevel(config.level.value)
    logging.basicConfig(level=config.level.value, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging at {config.level.value}{' as JSON' if json_format else ''}"
    )


class SettlementLogger(logging.LoggerAdapter):
    """Prefixes messages with settlement context and carries it as record extras."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        context = {k: v for k, v in self.extra.items() if v is not None}
        kwargs["extra"] = {**context, **(kwargs.get("extra") or {})}
        if context:
            msg = "[" + " ".join(f"{k}={v}" for k, v in context.items()) + f"] {msg}"
        return msg, kwargs


def get_logger(name: str, **context: Any) -> SettlementLogger:
    """
    Logger bound to settlement context.

    Example:
        log = get_logger(__name__, transaction_id=record.id)
        log.info("Submitted")
    """
    return SettlementLogger(logging.getLogger(name), context)
