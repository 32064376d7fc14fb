"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class StoreError(ServiceError):
    """TTL store operation failed on every backend."""

    pass


class CircuitOpenError(ServiceError):
    """Circuit breaker is open and no fallback was supplied."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class RequestTimeoutError(ServiceError):
    """Request attempt timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class ServiceUnavailableError(ServiceError):
    """Service is not configured or temporarily unavailable."""

    pass


class MessageTooLongError(ServiceError):
    """Outbound text exceeds the provider length limit."""

    def __init__(self, length: int, max_length: int, service_id: str | None = None):
        self.length = length
        self.max_length = max_length
        super().__init__(
            f"Message length ({length}) exceeds limit of {max_length} characters",
            service_id=service_id,
        )


class ChunkSendError(ServiceError):
    """A chunk of a split message could not be delivered."""

    def __init__(self, chunk_index: int, total: int, cause: Exception):
        self.chunk_index = chunk_index
        self.total = total
        self.cause = cause
        super().__init__(
            f"Failed to send message chunk {chunk_index + 1}/{total}: {cause}",
            service_id="whatsapp",
        )
