from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, Optional

import structlog

# Substrings of event keys whose values must never reach the log output
_SENSITIVE_MARKERS = ("token", "authorization", "password", "secret")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a short id to every event logged while one API call is handled.

    Each ``ApiClient.request`` starts a new id; the refresh and the replay it
    triggers run in the same context and therefore log under the caller's id.
    """
    rid = request_id or uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(request_id=rid)
    return rid


def get_request_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get("request_id")


def _mask(key: str, value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _mask(str(k), v) for k, v in value.items()}
    lower_key = key.lower()
    if not isinstance(value, str) or not any(m in lower_key for m in _SENSITIVE_MARKERS):
        return value
    scheme, sep, credential = value.partition(" ")
    if sep and scheme.lower() == "bearer":
        return f"{scheme} {_mask('token', credential)}"
    return "***" + value[-4:] if len(value) > 12 else "***"


def _scrub_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask bearer and refresh tokens, including inside header/body dicts."""
    for key, value in list(event_dict.items()):
        event_dict[key] = _mask(key, value)
    return event_dict


def configure_logging(
    level: Optional[str] = None,
    *,
    json_output: Optional[bool] = None,
) -> None:
    """(Re)configure structlog for the client.

    Defaults come from ``LOG_LEVEL``, ``LOG_JSON`` and ``LOG_DEV_MODE``;
    dev mode forces the coloured console renderer.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = _env_flag("LOG_JSON", "true") and not _env_flag("LOG_DEV_MODE", "false")

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _scrub_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
