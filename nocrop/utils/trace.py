"""Job-scoped tracing helpers (trace_id/user_id) for structured logs."""

from __future__ import annotations

import contextvars
import secrets
from dataclasses import dataclass
from typing import Optional

_trace_id: contextvars.ContextVar[str] = contextvars.ContextVar("trace_id", default="-")
_user_id: contextvars.ContextVar[str] = contextvars.ContextVar("user_id", default="-")


def new_trace_id() -> str:
    # 6 random bytes -> 12 hex chars, short enough to grep
    return secrets.token_hex(6)


def get_trace_id() -> str:
    return _trace_id.get()


def get_user_id() -> str:
    return _user_id.get()


@dataclass
class TraceTokens:
    trace_id_token: contextvars.Token
    user_id_token: contextvars.Token


class TraceContext:
    """Context manager to set job-scoped trace values."""

    def __init__(self, user_id: Optional[object] = None, trace_id: Optional[str] = None):
        if not trace_id or trace_id == "-":
            self._tid = new_trace_id()
        else:
            self._tid = trace_id
        self._uid = str(user_id) if user_id is not None else "-"
        self._tokens: Optional[TraceTokens] = None

    @property
    def trace_id(self) -> str:
        return self._tid

    def __enter__(self) -> "TraceContext":
        self._tokens = TraceTokens(
            trace_id_token=_trace_id.set(self._tid),
            user_id_token=_user_id.set(self._uid),
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._tokens:
            return
        _trace_id.reset(self._tokens.trace_id_token)
        _user_id.reset(self._tokens.user_id_token)
        self._tokens = None


class TraceLogFilter:
    """Inject trace fields into log records to avoid KeyError in format."""

    def __init__(self, instance_id: str = "-"):
        self.instance_id = instance_id

    def filter(self, record) -> bool:
        record.trace_id = getattr(record, "trace_id", None) or get_trace_id()
        record.user_id = getattr(record, "user_id", None) or get_user_id()
        record.instance_id = getattr(record, "instance_id", None) or self.instance_id
        return True
