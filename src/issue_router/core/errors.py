"""Error taxonomy for the routing pipeline."""

from typing import Optional


class RouterError(Exception):
    """Base class for routing errors."""


class ConfigError(RouterError):
    """Malformed or missing routing configuration (fatal, pre-flight)."""


class ClassificationError(RouterError):
    """AI classifier could not produce a usable classification."""


class ApiError(RouterError):
    """GitHub REST/GraphQL call failed.

    Args:
        message: Human readable description
        status_code: HTTP status, None for network errors
        transient: Whether the failure is worth retrying
        retry_after: Server-suggested delay in seconds, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        transient: bool = False,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.transient = transient
        self.retry_after = retry_after

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.message}"
        return self.message
