"""Custom exception classes for the vault service."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class.
    Follows RFC 7807 Problem Details so callers that expose the engine over
    HTTP can render failures without translating them.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.

    Example:
        raise AppException(
            status_code=503,
            detail="Primary region unreachable",
            type="backend-unavailable",
            extra={"region": "us-east-1"},
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            status_code: HTTP status code.
            detail: Human-readable error message.
            type: Error type identifier.
            title: Short summary of the problem type.
            instance: URI reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title for HTTP status code."""
        titles = {
            400: "Bad Request",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
            504: "Gateway Timeout",
        }
        return titles.get(status_code, "Error")


class ConfigError(AppException):
    """Raised when the engine configuration is invalid.

    Configuration errors are fatal: the engine refuses to initialize and
    every later upload fails until an operator fixes the configuration.
    """

    def __init__(
        self,
        detail: str,
        type: str = "config-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=500,
            detail=detail,
            type=type,
            title="Configuration Error",
            extra=extra,
        )


class NoPrimaryRegionError(ConfigError):
    """Raised when no configured region carries the primary flag."""

    def __init__(self, extra: dict[str, Any] | None = None) -> None:
        super().__init__(
            "No primary storage region configured",
            type="no-primary-region",
            extra=extra,
        )


class MissingCredentialsError(ConfigError):
    """Raised when the selected provider's credentials are absent.

    Example:
        raise MissingCredentialsError(
            provider="aws_s3",
            missing=["access_key", "secret_key"],
        )
    """

    def __init__(self, provider: str, missing: list[str]) -> None:
        self.provider = provider
        self.missing = missing
        super().__init__(
            f"Credentials for provider '{provider}' not configured: missing {', '.join(missing)}",
            type="missing-credentials",
            extra={"provider": provider, "missing": missing},
        )
