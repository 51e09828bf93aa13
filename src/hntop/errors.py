"""Error types shared across hntop.

Store failures are wrapped in ``HnTopError`` and propagated to callers. Upstream
and cache failures are logged where they happen; only the bulk upstream calls
raise, so the worker can skip a phase without guessing what went wrong.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    STORE_ERROR = "STORE_ERROR"
    UPSTREAM_FETCH_FAILED = "UPSTREAM_FETCH_FAILED"
    LOGIN_FAILED = "LOGIN_FAILED"


class HnTopError(Exception):
    """Domain error carrying a stable code and a retry hint."""

    def __init__(self, code: ErrorCode, message: str, recoverable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, object]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }
