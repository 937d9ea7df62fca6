"""
Exception classes for the subledger system.

All exceptions inherit from SubledgerError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class SubledgerError(Exception):
    """Base exception for all subledger errors."""

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


class NotFoundError(SubledgerError):
    """Raised when a domain is absent from every resolution tier."""

    pass


class UnavailableError(SubledgerError):
    """Raised when the network or local node cannot be reached."""

    pass


class GatewayError(UnavailableError):
    """Raised when every gateway endpoint failed to serve a content id."""

    pass


class NodeUnavailableError(UnavailableError):
    """Raised when the local content node is not reachable for publishing."""

    pass


class CorruptDataError(SubledgerError):
    """Raised when a fetched blob or stored record cannot be parsed."""

    pass


class PersistenceError(SubledgerError):
    """Raised when store, delta or manifest file operations fail."""

    pass


class PublishError(SubledgerError):
    """Raised when publishing to the content network fails."""

    pass


class ScanError(SubledgerError):
    """Raised when the external scanner cannot produce results."""

    pass


class ToolNotFoundError(ScanError):
    """Raised when the scanner executable is not installed."""

    pass


class ScanExecutionError(ScanError):
    """Raised when the scanner exits abnormally or times out."""

    pass


class ConfigError(SubledgerError):
    """Raised when a configuration is unusable."""

    pass
