import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import date, datetime, timezone
from typing import Any

from nexusdash.core.config import get_settings

SERVER_LOGGER_NAME = "nexusdash.server"

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}

logger = logging.getLogger(SERVER_LOGGER_NAME)


def normalize_error(error: Any) -> dict:
    if isinstance(error, BaseException):
        return {
            "errorName": type(error).__name__,
            "errorMessage": str(error),
            "errorStack": "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
            if error.__traceback__
            else None,
        }

    if isinstance(error, str):
        return {"errorMessage": error}

    return {"errorMessage": "Unknown error type", "error": error}


def to_jsonable(value: Any, _path: set[int] | None = None) -> Any:
    """
    Convert arbitrary metadata into something json.dumps accepts.

    Containers already on the current path are replaced by "[Circular]".
    """
    path = _path if _path is not None else set()

    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, BaseException):
        value = normalize_error(value)

    if isinstance(value, (dict, list, tuple, set, frozenset)):
        marker = id(value)
        if marker in path:
            return "[Circular]"
        path.add(marker)
        try:
            if isinstance(value, dict):
                return {str(k): to_jsonable(v, path) for k, v in value.items()}
            return [to_jsonable(item, path) for item in value]
        finally:
            path.discard(marker)

    return str(value)


class JsonLineFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def __init__(self, service: str, runtime_environment: str):
        super().__init__()
        self.service = service
        self.runtime_environment = runtime_environment

    def format(self, record: logging.LogRecord) -> str:
        metadata = dict(getattr(record, "metadata", None) or {})
        if record.exc_info and "errorName" not in metadata:
            metadata.update(normalize_error(record.exc_info[1]))

        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "scope": getattr(record, "scope", record.name),
            "runtimeEnvironment": self.runtime_environment,
            "service": self.service,
            "message": record.getMessage(),
            "metadata": to_jsonable(metadata),
        }

        request_id = request_id_var.get()
        if request_id:
            payload["requestId"] = request_id

        return json.dumps(payload, default=str)


def configure_logging() -> None:
    settings = get_settings()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JsonLineFormatter(settings.service_name, settings.runtime_environment)
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level.upper())


def log_server_info(scope: str, message: str, metadata: dict | None = None) -> None:
    logger.info(message, extra={"scope": scope, "metadata": metadata or {}})


def log_server_warning(scope: str, message: str, metadata: dict | None = None) -> None:
    logger.warning(message, extra={"scope": scope, "metadata": metadata or {}})


def log_server_error(scope: str, error: Any, metadata: dict | None = None) -> None:
    logger.error(
        "Unhandled server error",
        extra={
            "scope": scope,
            "metadata": {**(metadata or {}), **normalize_error(error)},
        },
    )
