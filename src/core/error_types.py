"""Error type enumeration for provider metrics.

Provides type-safe error categorization for monitoring and logs.
"""

from __future__ import annotations

from enum import Enum

import httpx

from src.core.exceptions import (
    ApiKeysExhaustedError,
    CircuitOpenError,
    ProviderError,
    RetryableProviderError,
)


class ErrorType(str, Enum):
    """Error type categories recorded per provider.

    When adding new error types:
    1. Add the enum value here
    2. Teach classify_error() to produce it
    """

    # Transport errors
    TIMEOUT = "timeout"  # Request or connect timeout
    NETWORK_ERROR = "network_error"  # Connection refused, DNS, reset

    # HTTP/API errors
    UPSTREAM_HTTP_ERROR = "upstream_http_error"  # Non-2xx from provider
    AUTH_ERROR = "auth_error"  # 401/402/403
    RATE_LIMIT = "rate_limit"  # 429

    # Orchestration errors
    CIRCUIT_OPEN = "circuit_open"  # Rejected by breaker
    EMPTY_IMAGE = "empty_image"  # Image requested, none returned
    KEYS_EXHAUSTED = "keys_exhausted"  # No usable API key

    # Catch-all
    UNEXPECTED_ERROR = "unexpected_error"


def classify_error(error: BaseException) -> ErrorType:
    """Map an exception raised during a provider attempt to an ErrorType."""
    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return ErrorType.TIMEOUT
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ErrorType.NETWORK_ERROR
    if isinstance(error, CircuitOpenError):
        return ErrorType.CIRCUIT_OPEN
    if isinstance(error, ApiKeysExhaustedError):
        return ErrorType.KEYS_EXHAUSTED
    if isinstance(error, RetryableProviderError):
        return ErrorType.EMPTY_IMAGE
    if isinstance(error, ProviderError):
        if error.status_code in (401, 402, 403):
            return ErrorType.AUTH_ERROR
        if error.status_code == 429:
            return ErrorType.RATE_LIMIT
        if error.status_code is not None:
            return ErrorType.UPSTREAM_HTTP_ERROR
    return ErrorType.UNEXPECTED_ERROR
