import logging
import sys
import json
from datetime import datetime, timezone


# Context attributes a record may carry (via ``extra=`` or LogContext)
CONTEXT_FIELDS = ("pass_id", "site_id", "slot", "outcome")


def _context_of(record: logging.LogRecord) -> dict:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(_context_of(record))

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for a terminal"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    # record attribute -> (label, max chars)
    _LABELS = (
        ("pass_id", "pass", 8),
        ("site_id", "site", None),
        ("slot", "slot", None),
        ("outcome", "outcome", None),
    )

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        parts = []
        for attr, label, width in self._LABELS:
            if hasattr(record, attr):
                value = str(getattr(record, attr))
                parts.append(f"{label}={value[:width] if width else value}")
        context = f" [{' '.join(parts)}]" if parts else ""

        line = (
            f"{color}[{timestamp}] {record.levelname:8}{self.RESET} "
            f"{record.name}{context} - {record.getMessage()}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Configure the root logger with a single stdout handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Emit JSON lines instead of colored console output
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())
    root.addHandler(handler)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, json={use_json}")


def setup_logging_from_settings(s=None) -> None:
    if s is None:
        from scavenger.config import settings as s
    setup_logging(s.log_level, use_json=s.log_json)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Logger wrapper that stamps pass/site context onto every record.

    Usage:
        log = LogContext(logger, pass_id=pass_id)
        site_log = log.bind(site_id=site.site_id)
        site_log.info("Dispatching", extra={"slot": 2})
    """

    def __init__(self, logger: logging.Logger, **fields):
        self.logger = logger
        self.context = {k: v for k, v in fields.items() if v is not None}

    def bind(self, **fields) -> "LogContext":
        return LogContext(self.logger, **{**self.context, **fields})

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = {**kwargs.pop("extra", {}), **self.context}
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._log(logging.CRITICAL, msg, *args, **kwargs)
