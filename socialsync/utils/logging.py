"""
Structured logging for socialsync.

Every record passes through two filters before it is formatted:

- ``LogContextFilter`` stamps the current request id and the platform
  being worked on (set with ``platform_context``), so lines emitted by a
  connector during a fan-out publish can be told apart.
- ``SensitiveDataFilter`` scrubs OAuth material (access and refresh
  tokens, client secrets, PKCE verifiers, authorization codes, Bearer and
  Basic credentials) from the message, its arguments and any ``extra``
  string values.

Production gets one JSON object per line; development gets a compact
colored line.
"""

import json
import logging
import os
import re
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Pattern

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
platform_var: ContextVar[Optional[str]] = ContextVar("platform", default=None)

REDACTED = "[REDACTED]"

# key=value / "key": "value" pairs whose value is a credential
_SECRET_KEYS = (
    "access_token|refresh_token|id_token|client_secret|code_verifier"
    "|ig_exchange_token|secret|token"
)

# Group 1 is kept; whatever follows it is replaced
SENSITIVE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"((?:" + _SECRET_KEYS + r")[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+", re.IGNORECASE),
    re.compile(r"([?&]code=)[^&\s]+", re.IGNORECASE),
    re.compile(r"(bearer\s+)[\w.~+/=-]+", re.IGNORECASE),
    re.compile(r"(basic\s+)[A-Za-z0-9+/=]{8,}", re.IGNORECASE),
    re.compile(r"()eyJ[\w-]+\.eyJ[\w-]+\.[\w-]+"),  # JWTs
]

# LogRecord attributes that are not caller-supplied extras
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime", "request_id", "platform"}


def redact_sensitive_data(message: str) -> str:
    """Replace credential values in ``message`` with [REDACTED], keeping the key."""
    if not message:
        return message
    for pattern in SENSITIVE_PATTERNS:
        message = pattern.sub(lambda m: m.group(1) + REDACTED, message)
    return message


def extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """The ``extra={...}`` values a caller attached to ``record``."""
    return {
        k: v for k, v in record.__dict__.items()
        if k not in _RECORD_ATTRS and not k.startswith("_")
    }


class LogContextFilter(logging.Filter):
    """Stamp request id and platform onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        if not getattr(record, "platform", None):
            record.platform = platform_var.get() or "-"
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub OAuth credentials from messages, arguments and extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_sensitive_data(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: redact_sensitive_data(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            else:
                record.args = tuple(
                    redact_sensitive_data(a) if isinstance(a, str) else a
                    for a in record.args
                )
        for key, value in extra_fields(record).items():
            if isinstance(value, str):
                setattr(record, key, redact_sensitive_data(value))
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"timestamp": "...", "level": "INFO", "logger": "socialsync.social.manager",
     "service": "socialsync-api", "request_id": "-", "platform": "tiktok",
     "message": "...", "extra": {...}}
    """

    def __init__(self, service_name: str = "socialsync-api"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service_name,
            "request_id": getattr(record, "request_id", "-"),
            "platform": getattr(record, "platform", "-"),
            "message": record.getMessage(),
        }

        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extras = extra_fields(record)
        if extras:
            entry["extra"] = extras

        return json.dumps(entry, default=str, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """
    Compact colored output.

    Format: HH:MM:SS.mmm LEVEL    platform logger: message key=value ...
    """

    COLORS: Dict[str, str] = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        platform = getattr(record, "platform", "-")

        line = (
            f"{self.DIM}{clock}{self.RESET} "
            f"{color}{record.levelname:<8}{self.RESET} "
            f"{platform:<9} {record.name}: {record.getMessage()}"
        )

        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            line += f" {self.DIM}req={request_id[:8]}{self.RESET}"

        extras = extra_fields(record)
        if extras:
            pairs = " ".join(f"{k}={v}" for k, v in extras.items())
            line += f" {self.DIM}{pairs}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def get_log_level(level_name: Optional[str] = None) -> int:
    """Resolve a level name (or LOG_LEVEL) to a logging level, defaulting to INFO."""
    level = logging.getLevelName((level_name or os.environ.get("LOG_LEVEL", "INFO")).upper())
    return level if isinstance(level, int) else logging.INFO


def should_use_json_format(force_json: bool = False) -> bool:
    """JSON when forced (argument or LOG_FORMAT_JSON) or when running in production."""
    if force_json or os.environ.get("LOG_FORMAT_JSON", "").lower() in ("true", "1", "yes"):
        return True
    environment = os.environ.get("ENVIRONMENT") or os.environ.get("SENTRY_ENVIRONMENT", "development")
    return environment.lower() in ("production", "prod")


def setup_logging(
    service_name: str = "socialsync-api",
    log_level: Optional[str] = None,
    force_json: bool = False,
) -> logging.Logger:
    """
    Install the socialsync handler on the root logger.

    Call once at startup; existing root handlers are replaced.
    """
    level = get_log_level(log_level)
    use_json = should_use_json_format(force_json)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(LogContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JSONFormatter(service_name) if use_json else DevelopmentFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    # httpx logs full request URLs, which can carry OAuth codes
    for noisy in ("httpx", "httpcore", "uvicorn.access", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root.info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(level), "log_format": "json" if use_json else "development"},
    )
    return root


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


@contextmanager
def platform_context(platform: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``platform``."""
    token = platform_var.set(platform)
    try:
        yield
    finally:
        platform_var.reset(token)


class Timer:
    """
    Log how long a block took.

        with Timer("fan_out_publish", logger):
            await asyncio.gather(...)
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None, log_level: int = logging.DEBUG):
        self.name = name
        self.logger = logger
        self.log_level = log_level
        self.elapsed_ms: float = 0.0
        self._start = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000
        if self.logger:
            self.logger.log(
                self.log_level,
                f"{self.name} took {self.elapsed_ms:.1f}ms",
                extra={"operation": self.name, "duration_ms": round(self.elapsed_ms, 2), "success": exc_type is None},
            )
