# app/core/logging.py
"""
Centralized logging for OrderDesk.

Features:
- Stdlib logging + structlog (JSON in prod, dev console otherwise).
- Sensitive fields redaction.
- Context (request_id, actor_id, actor_role) via contextvars.
- Uvicorn integration (no duplicate handlers).

Env knobs (optional):
  LOG_LEVEL=INFO
  LOG_JSON=1
  ENVIRONMENT=production|development|test
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Dict, Optional, Tuple

import structlog

from app.core.config import get_settings

_CONFIGURED = False

# ---------- Secrets redaction ----------
_SECRET_KEYS = ("secret", "password", "token", "api_key", "api_secret", "auth_token")


def _mask_secret_value(v: Any) -> Any:
    try:
        s = str(v)
    except Exception:
        return "***"
    if len(s) <= 6:
        return "***"
    return s[:3] + "***" + s[-3:]


def redact_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        out: Dict[str, Any] = {}
        for k, v in data.items():
            lk = str(k).lower()
            if any(x in lk for x in _SECRET_KEYS) and "public" not in lk:
                out[k] = _mask_secret_value(v)
            else:
                out[k] = redact_secrets(v)
        return out
    if isinstance(data, list):
        return [redact_secrets(v) for v in data]
    if isinstance(data, tuple):
        return tuple(redact_secrets(v) for v in data)
    return data


# ---------- Context ----------
_ctx_request_id: ContextVar[str] = ContextVar("request_id", default="")
_ctx_actor_id: ContextVar[str] = ContextVar("actor_id", default="")
_ctx_actor_role: ContextVar[str] = ContextVar("actor_role", default="")


def _inject_context(_, __, event_dict):
    rid = _ctx_request_id.get()
    if rid and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    aid = _ctx_actor_id.get()
    if aid and "actor_id" not in event_dict:
        event_dict["actor_id"] = aid
    role = _ctx_actor_role.get()
    if role and "actor_role" not in event_dict:
        event_dict["actor_role"] = role
    return event_dict


def _redact_processor(_, __, event_dict):
    return redact_secrets(event_dict)


def _add_app(_, __, event_dict):
    s = get_settings()
    event_dict.setdefault("app", s.PROJECT_NAME)
    event_dict.setdefault("env", s.ENVIRONMENT)
    return event_dict


def _configure_structlog() -> None:
    s = get_settings()
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_context,
        _redact_processor,
        _add_app,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    use_json = s.LOG_JSON or s.ENVIRONMENT == "production"
    processors.append(structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, str(s.LOG_LEVEL).upper(), logging.INFO),
    )


# ---------- Public API ----------
def configure_logging() -> None:
    """Idempotent logging setup (stdlib + structlog)."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    _configure_structlog()
    integrate_uvicorn_loggers()
    logging.getLogger(__name__).info("Logging initialized")
    _CONFIGURED = True


def get_logger(name: str):
    return structlog.get_logger(name)


def clear_context() -> None:
    """Clear all logging context variables."""
    _ctx_request_id.set("")
    _ctx_actor_id.set("")
    _ctx_actor_role.set("")


@contextmanager
def bind_context(
    request_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
):
    """Scoped binding with automatic reset."""
    tokens: list[Tuple[ContextVar[str], Token]] = []
    if request_id is not None:
        tokens.append((_ctx_request_id, _ctx_request_id.set(request_id)))
    if actor_id is not None:
        tokens.append((_ctx_actor_id, _ctx_actor_id.set(str(actor_id))))
    if actor_role is not None:
        tokens.append((_ctx_actor_role, _ctx_actor_role.set(str(actor_role))))
    try:
        yield
    finally:
        for var, tok in reversed(tokens):
            var.reset(tok)


def integrate_uvicorn_loggers() -> None:
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "redact_secrets",
    "integrate_uvicorn_loggers",
]
