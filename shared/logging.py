"""
Structured logging for the auth middleware.

Every event is rendered as one JSON line carrying the request id, the
authenticated username (once the gate has established it) and the active
trace id. Tokens and passwords never go into events; use ``fingerprint``.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog
from opentelemetry import trace

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
username_var: ContextVar[Optional[str]] = ContextVar("username", default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog JSON output for a service."""
    level = getattr(logging, log_level.upper())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            add_component,
            add_trace_context,
            add_request_context,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger(service_name).setLevel(level)


def add_component(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # "auth.cas" -> component "cas"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["component"] = logger_name.split(".", 1)[1]
    return event_dict


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    span_context = trace.get_current_span().get_span_context()
    if span_context.trace_id != 0:
        event_dict["trace_id"] = f"{span_context.trace_id:032x}"
    return event_dict


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    username = username_var.get()
    if username:
        event_dict["username"] = username
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set the request id for this context, generating one if needed."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_username(username: Optional[str]) -> None:
    if username:
        username_var.set(username)


def clear_context() -> None:
    request_id_var.set(None)
    username_var.set(None)


def fingerprint(secret: Optional[str]) -> str:
    """Short prefix of a token for log lines."""
    if not secret:
        return ""
    return secret[:8] + "..."


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
