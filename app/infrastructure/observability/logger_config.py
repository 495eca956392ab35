import logging

import structlog
from structlog.contextvars import merge_contextvars

from app.core.settings import settings
from app.infrastructure.observability.context_vars import get_run_id, get_user_id


def add_context_vars(_, __, event_dict):
    """
    Injects run-scoped ContextVars into every event and renames `event` to `message`.
    """
    run_id = get_run_id()
    if run_id and "run_id" not in event_dict:
        event_dict["run_id"] = run_id

    trace = {"user_id": get_user_id()}
    existing_trace = event_dict.get("trace", {})
    if isinstance(existing_trace, dict):
        trace.update(existing_trace)
    trace = {k: v for k, v in trace.items() if v is not None}
    if trace:
        event_dict["trace"] = trace

    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")

    return event_dict


def configure_structlog():
    """
    Configures structlog to emit canonical JSON lines keyed by run id.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))

    resolved_level = str(settings.LOG_LEVEL or "INFO").upper()
    log_level = getattr(logging, resolved_level, logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[handler],
        force=True,
    )

    processors = [
        merge_contextvars,
        add_context_vars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
