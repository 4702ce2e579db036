"""
Logging Configuration

Human-readable output in development, one JSON object per line in
production. Request-scoped fields (tenant_id, user_id, path, method) are
passed explicitly through `extra=`; see request_log_extra().

Audit records go through log_security_event() and are tagged with
security_event=True so they can be routed to a separate sink.
Plaintext passwords and raw tokens must never reach a logger.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

# Copied from the record into JSON output when present
EXTRA_FIELDS = (
    "tenant_id",
    "user_id",
    "request_id",
    "path",
    "method",
    "security_event",
    "event_type",
    "reason",
)

# Library loggers that are too chatty at INFO
QUIET_LOGGERS: Mapping[str, str] = {
    "uvicorn.access": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "passlib": "ERROR",
}

# Names that LogRecord already owns; passing them in extra= raises KeyError
_RESERVED = {"message", "msg", "args", "asctime"}

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Secrets that slip into a message are masked before JSON output
_SENSITIVE_PATTERNS = [
    re.compile(r"(bearer\s+)([^\s\"]+)", re.IGNORECASE),
    re.compile(r"(password\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
]


def _mask(value: str) -> str:
    for pattern in _SENSITIVE_PATTERNS:
        value = pattern.sub(r"\1***", value)
    return value


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _mask(record.getMessage()),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            {name: getattr(record, name) for name in EXTRA_FIELDS if hasattr(record, name)}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure the root logger. Call once at application startup.

    Replaces any handlers installed before, so calling it again (e.g. on
    reload) does not duplicate output.
    """
    level = log_level.upper()
    if not isinstance(logging.getLevelName(level), int):
        level = "INFO"

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)

    for logger_name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def request_log_extra(request) -> Dict[str, Any]:
    """Fields identifying the request a record belongs to."""
    state = request.state
    claims = getattr(state, "claims", None)
    return {
        "path": request.url.path,
        "method": request.method,
        "tenant_id": getattr(claims, "tenant_id", None),
        "user_id": getattr(claims, "user_id", None),
    }


def log_security_event(event_type: str, details: Dict[str, Any], logger: logging.Logger) -> None:
    """
    Emit an audit record at WARNING.

    Event types in use:
    - failed_login: unknown email, wrong password or inactive account
    - invalid_token: rejected bearer token (bad, expired, wrong audience)
    - forbidden_role: role check failed
    - tenant_isolation_violation: attempted cross-tenant write
    - tenant_reassignment_ignored: update tried to change tenant_id
    - rate_limit_exceeded: tenant bucket exhausted
    """
    extra = {key: value for key, value in details.items() if key not in _RESERVED}
    extra.update(security_event=True, event_type=event_type)
    logger.warning(f"SECURITY EVENT: {event_type}", extra=extra)
