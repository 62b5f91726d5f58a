"""Errors raised while cleaning a repository."""

from collections.abc import Mapping


class RegistryCleanupError(Exception):
    """Base exception for all cleanup errors."""

    pass


class ConfigurationError(RegistryCleanupError):
    """Raised when the configuration is missing or invalid."""

    pass


class ProtocolUnsupported(RegistryCleanupError):
    """Raised when the registry does not answer the v2 capability probe."""

    pass


class AuthenticationError(RegistryCleanupError):
    """Raised when login, token fetch or challenge decoding fails."""

    pass


class DiscoveryError(RegistryCleanupError):
    """Raised when the tag list cannot be fetched or decoded."""

    pass


class ResolutionError(RegistryCleanupError):
    """Raised when the creation time of a single tag cannot be resolved."""

    pass


class DeletionError(RegistryCleanupError):
    """Raised when a single tag cannot be deleted."""

    pass


class RequestFailed(RegistryCleanupError):
    """Raised by the rest client for transport errors and non 2xx answers."""

    def __init__(
        self,
        method: str,
        url: str,
        reason: str,
        status_code: int | None = None,
        body: bytes = b"",
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.method = method
        self.url = url
        self.reason = reason
        self.status_code = status_code
        self.body = body
        self.headers = headers
        super().__init__(f"{method} {url}: {reason}")
