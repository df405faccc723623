"""Utility functions for btcfetch."""

from btcfetch.utils.exceptions import (
    BtcFetchError,
    TransportError,
    RpcError,
    InvalidRangeError,
    ChainForkError,
    FetchCancelledError,
    ErrorCategory,
    sanitize_error_message,
)

__all__ = [
    "BtcFetchError",
    "TransportError",
    "RpcError",
    "InvalidRangeError",
    "ChainForkError",
    "FetchCancelledError",
    "ErrorCategory",
    "sanitize_error_message",
]
