"""structlog setup and request-scoped log context.

Every event carries whichever of these are bound for the current task:
request_id, user_id, path, method (set by the request-id middleware) and
session_id, conversation_id (set by the analysis and chat orchestrators).
Fields passed explicitly on the log call take precedence.

    logger = get_logger(__name__)
    logger.info("analysis.started", file_count=3)
"""

import logging
import sys
from contextvars import ContextVar

import structlog

CONTEXT_FIELDS = ("request_id", "user_id", "path", "method", "session_id", "conversation_id")

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"refyn_{name}", default=None) for name in CONTEXT_FIELDS
}

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "PIL")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: copy bound context fields onto the event."""
    for name, var in _context.items():
        value = var.get()
        if value:
            event_dict.setdefault(name, value)
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        json_format: JSON lines when True, the coloured console renderer otherwise.
        level: Root log level.
    """
    processors = _shared_processors()
    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def _bind(**values: str | None) -> None:
    for name, value in values.items():
        if value is not None:
            _context[name].set(value)


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind request fields. ``request_id`` is always replaced; the rest only when given."""
    _context["request_id"].set(request_id)
    _bind(user_id=user_id, path=path, method=method)


def set_pipeline_context(session_id: str | None = None, conversation_id: str | None = None) -> None:
    """Bind the upload session and conversation an orchestrator is working on."""
    _bind(session_id=session_id, conversation_id=conversation_id)


def clear_request_context() -> None:
    for var in _context.values():
        var.set(None)


def get_request_id() -> str | None:
    return _context["request_id"].get()
