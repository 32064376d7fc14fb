"""
HTTP-facing exceptions for the webhook routes.
"""

from fastapi import HTTPException, status


class InvalidSignatureError(HTTPException):
    """Webhook signature did not match the app secret."""

    def __init__(self, detail: str = "Invalid signature"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class VerificationFailedError(HTTPException):
    """Webhook subscription verification was rejected."""

    def __init__(self, detail: str = "Verification failed"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InvalidPayloadError(HTTPException):
    """Request body is not valid JSON."""

    def __init__(self, detail: str = "Invalid JSON"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class TooManyRequestsError(HTTPException):
    """Client exceeded its request window."""

    def __init__(self, retry_after: int, headers: dict[str, str] | None = None):
        all_headers = {"Retry-After": str(retry_after)}
        if headers:
            all_headers.update(headers)
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Try again after {retry_after} seconds.",
            headers=all_headers,
        )
