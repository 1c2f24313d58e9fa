"""
Exception types shared by the chat client, provider resolution and the API layer.
"""
from typing import Optional


class ConfigurationError(Exception):
    """Raised when a provider is unknown or its credential is not configured."""
    pass


class ChatClientError(Exception):
    """Base class for chat-completion call failures."""
    pass


class ProviderError(ChatClientError):
    """
    Raised for a non-retryable (non-2xx, non-429, non-5xx) provider response.

    Attributes:
        status_code: HTTP status returned by the provider
        body: Raw response body, kept for diagnostics
    """
    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransientProviderError(ChatClientError):
    """
    Captured for HTTP 429 / 5xx responses while retrying.

    Only surfaces to callers once every retry attempt has been used.
    """
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
