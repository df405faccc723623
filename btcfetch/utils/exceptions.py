"""
Exception hierarchy for btcfetch.

Provides:
- Custom exception classes with error codes
- Error categorization (retryable, fatal, validation, ...)
- Safe error message formatting (no API key leak)
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Error categories for classification."""
    RETRYABLE = "retryable"
    FATAL = "fatal"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    CANCELLED = "cancelled"


class BtcFetchError(Exception):
    """Base exception for all btcfetch errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class TransportError(BtcFetchError):
    """HTTP, parse or id-correlation failure of a JSON-RPC exchange."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "TRANSPORT_ERROR",
        status_code: int | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        if code == "TIMEOUT":
            category = ErrorCategory.TIMEOUT
        elif status_code == 429:
            category = ErrorCategory.RATE_LIMIT
        else:
            category = ErrorCategory.RETRYABLE if retryable else ErrorCategory.FATAL
        merged = dict(details or {})
        merged.setdefault("status_code", status_code)
        super().__init__(message, code=code, category=category, details=merged)
        self.status_code = status_code
        self.retryable = retryable


class RpcError(BtcFetchError):
    """The node answered with a JSON-RPC error object."""

    def __init__(
        self,
        method: str,
        rpc_code: int | None,
        message: str,
        data: Any = None,
        *,
        code: str = "RPC_ERROR",
    ):
        super().__init__(
            f"RPC method '{method}' failed: {message}",
            code=code,
            category=ErrorCategory.FATAL,
            details={"method": method, "rpc_code": rpc_code, "data": data},
        )
        self.method = method
        self.rpc_code = rpc_code
        self.data = data


class InvalidRangeError(BtcFetchError):
    """Malformed fetch window (nothing to fetch, negative heights, ...)."""

    def __init__(self, message: str, from_height: int | None = None, tip_height: int | None = None):
        super().__init__(
            message,
            code="INVALID_RANGE",
            category=ErrorCategory.VALIDATION,
            details={"from_height": from_height, "tip_height": tip_height},
        )
        self.from_height = from_height
        self.tip_height = tip_height


class ChainForkError(BtcFetchError):
    """No common ancestor with the recorded chain within the lookback bound."""

    def __init__(self, lowest_height: int, lookback: int):
        super().__init__(
            f"No common ancestor found down to height {lowest_height} (lookback {lookback})",
            code="CHAIN_FORK",
            category=ErrorCategory.FATAL,
            details={"lowest_height": lowest_height, "lookback": lookback},
        )
        self.lowest_height = lowest_height
        self.lookback = lookback


class FetchCancelledError(BtcFetchError):
    """A batch fetch was cancelled through its cancel token."""

    def __init__(self, operation: str, pending: int = 0):
        super().__init__(
            f"Operation '{operation}' cancelled with {pending} request(s) in flight",
            code="CANCELLED",
            category=ErrorCategory.CANCELLED,
            details={"operation": operation, "pending": pending},
        )


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)(['\"]?\s*[=:]\s*)['\"]?([^\s'\",}]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove credentials from error messages."""
    sanitized = _SENSITIVE_PATTERNS[0].sub(lambda m: f"{m.group(1)}{m.group(2)}{replacement}", message)
    return _SENSITIVE_PATTERNS[1].sub(replacement, sanitized)
