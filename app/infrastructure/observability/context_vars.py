from contextvars import ContextVar
from typing import Optional

import structlog

_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def get_run_id() -> Optional[str]:
    return _run_id.get()


def get_user_id() -> Optional[str]:
    return _user_id.get()


def bind_context(run_id: Optional[str] = None, user_id: Optional[str] = None, **fields) -> None:
    """
    Binds run-scoped identifiers for the current task (and tasks it spawns).
    Extra fields go straight into structlog's contextvars.
    """
    if run_id is not None:
        _run_id.set(run_id)
    if user_id is not None:
        _user_id.set(user_id)
    structlog.contextvars.bind_contextvars(
        **{k: v for k, v in {"run_id": run_id, "user_id": user_id, **fields}.items() if v is not None}
    )


def clear_context() -> None:
    _run_id.set(None)
    _user_id.set(None)
    structlog.contextvars.clear_contextvars()
