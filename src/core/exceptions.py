"""
Exception hierarchy for the orchestrator.

All exceptions inherit from OrchestratorError, allowing callers to
catch every orchestrator-specific failure with a single except clause.

Example:
    >>> try:
    ...     response = await manager.send_message(Capability.TEXT_GENERATION, "hi")
    ... except NoProviderAvailableError as e:
    ...     print(f"Every provider failed: {e.last_error}")
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""

    pass


class ConfigurationLoadError(OrchestratorError):
    """Raised when the routing table is missing or malformed.

    This is fatal at initialization time: the manager stays uninitialized
    and the error propagates to the caller.

    Attributes:
        source: Where the configuration came from (file path or "<dict>")
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")


class NotInitializedError(OrchestratorError):
    """Raised when initialization does not complete within the bounded wait."""

    pass


class NoProviderAvailableError(OrchestratorError):
    """Raised when no provider could serve a capability.

    Either no candidate provider exists for the capability, or every
    candidate exhausted its attempts.

    Attributes:
        capability: Identifier of the capability that was requested
        last_error: Last underlying provider error, if any
    """

    def __init__(
        self,
        capability: str,
        message: str | None = None,
        last_error: BaseException | None = None,
    ) -> None:
        self.capability = capability
        self.last_error = last_error
        if message is None:
            message = f"All providers failed for capability {capability}."
            if last_error is not None:
                message += f" Last error: {last_error}"
        super().__init__(message)


class ProviderError(OrchestratorError):
    """Raised when a single provider attempt fails.

    Attributes:
        provider_id: Provider that produced the failure
        status_code: HTTP-like status code, if the failure carried one
        retryable: Whether the retry executor may try the same provider again
    """

    def __init__(
        self,
        provider_id: str,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.provider_id = provider_id
        self.status_code = status_code
        self.retryable = retryable
        status = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"[{provider_id}] {message}{status}")


class RetryableProviderError(ProviderError):
    """A provider failure that should always be retried.

    Used for synthetic failures such as an image-generation request that
    returned no image payload.
    """

    EMPTY_IMAGE_STATUS = 520

    def __init__(self, provider_id: str, message: str, status_code: int | None = None) -> None:
        super().__init__(
            provider_id,
            message,
            status_code=status_code if status_code is not None else self.EMPTY_IMAGE_STATUS,
            retryable=True,
        )


class ApiKeysExhaustedError(ProviderError):
    """Raised when every API key of a provider is failed or exhausted.

    Never retried: the orchestrator moves on to the next candidate provider.
    """

    def __init__(self, provider_id: str) -> None:
        super().__init__(provider_id, "No API keys available", retryable=False)


class CircuitOpenError(OrchestratorError):
    """Raised when a call is rejected because the provider's circuit is open.

    Attributes:
        provider_id: Provider whose breaker rejected the call
    """

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Circuit breaker is open for provider: {provider_id}")


class PreferenceStorageError(OrchestratorError):
    """Raised when user preferences cannot be written."""

    pass
