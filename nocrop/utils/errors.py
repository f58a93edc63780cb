"""Centralized error taxonomy and classification helpers.

Goal: stable short codes for logs + user-friendly messages.
Never leak internals into replies. Keep messages actionable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    INPUT = "E_INPUT"
    LOCK_BUSY = "E_LOCK_BUSY"
    NOT_FOUND = "E_NOT_FOUND"
    CODEC = "E_CODEC"
    STORE = "E_STORE"
    TIMEOUT = "E_TIMEOUT"
    INTERNAL = "E_INTERNAL"


class NoCropError(Exception):
    """Base class for every error raised by the core."""

    code: ErrorCode = ErrorCode.INTERNAL
    user_message: str = "Internal error. Please try again."

    def __init__(self, message: str = "", *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(NoCropError):
    """Malformed ratio/colour/layout/dimensions. Never retried."""

    code = ErrorCode.INPUT
    user_message = "Invalid input."


class LockBusyError(NoCropError):
    """Per-user lock is held elsewhere after the bounded retry."""

    code = ErrorCode.LOCK_BUSY
    user_message = "Another job for this user is still running."


class NotFoundError(NoCropError):
    """Referenced upload is missing or expired."""

    code = ErrorCode.NOT_FOUND
    user_message = "Upload not found or has expired. Please upload again."


class CodecError(NoCropError):
    """Image decode/transform/encode failed on otherwise valid input."""

    code = ErrorCode.CODEC
    user_message = "Could not process this image."


class PersistenceError(NoCropError):
    """Backing store unavailable or rejected the operation."""

    code = ErrorCode.STORE
    user_message = "Storage is temporarily unavailable. Please try again later."


class DuplicateKeyError(PersistenceError):
    """Store uniqueness constraint violated (someone inserted the key first)."""


@dataclass(frozen=True)
class ErrorInfo:
    code: ErrorCode
    user_message: str
    debug_reason: str


def classify_exception(exc: BaseException) -> ErrorInfo:
    name = exc.__class__.__name__
    msg = str(exc)[:500]

    if isinstance(exc, NoCropError):
        return ErrorInfo(exc.code, exc.user_message, f"{name}: {msg}")

    # Network-ish
    if name in {"TimeoutError", "ReadTimeout", "ConnectTimeout"}:
        return ErrorInfo(ErrorCode.TIMEOUT, "Timed out. Please try again.", f"{name}: {msg}")
    if name in {"ClientConnectorError", "ConnectionError", "TelegramNetworkError"}:
        return ErrorInfo(ErrorCode.STORE, "Service temporarily unavailable. Please try again later.", f"{name}: {msg}")

    return ErrorInfo(ErrorCode.INTERNAL, "Internal error. Please try again.", f"{name}: {msg}")
