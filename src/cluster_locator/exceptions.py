"""
Exception classes for the cluster locator.

All exceptions inherit from ClusterLocatorError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class ClusterLocatorError(Exception):
    """Base exception for all cluster locator errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class UrlFormatError(ClusterLocatorError):
    """Raised when a server address cannot be normalized."""

    pass


class NoServersAvailable(ClusterLocatorError):
    """Raised when no seed or verified server can serve a request."""

    pass


class VerificationFailed(ClusterLocatorError):
    """Raised when the hostnames handshake against one server fails."""

    pass


class ClusterIntegrityViolation(VerificationFailed):
    """Raised when a server reports a different cluster identifier."""

    pass


class ResetExhausted(ClusterLocatorError):
    """Raised through the ready future once reset attempts are used up."""

    pass


class PersistenceError(ClusterLocatorError):
    """Raised when a storage adapter cannot read or write stored servers."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass
