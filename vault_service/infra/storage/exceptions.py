"""Storage-specific exceptions for the encrypted-object engine.

Every failure the engine reports is a ``StorageError`` carrying a stable
``code``, an HTTP-style ``status_code`` and structured ``extra`` metadata.
Backend adapters raise ``BackendError`` subclasses that wrap the provider's
native error together with the logical object key, so the engine never has
to inspect vendor exception types.

Example:
    ```python
    from vault_service.infra.storage.exceptions import (
        BackendUnavailableError,
        StorageError,
    )

    try:
        result = await engine.store_encrypted_object(request)
    except BackendUnavailableError as e:
        # transient; the caller may retry
        logger.warning(f"Upload failed: {e.detail}", extra=e.extra)
    except StorageError as e:
        logger.error(f"Upload failed: {e.detail}", extra=e.extra)
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from vault_service.core.exceptions import AppException

if TYPE_CHECKING:
    from botocore.exceptions import ClientError


class StorageError(AppException):
    """Base exception for all storage-related errors.

    Attributes:
        code: Error code identifier for programmatic error handling.
        message: Human-readable error message.
        retryable: Whether the caller may retry the same operation.
        extra: Additional context-specific information about the error.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Initialize storage error.

        Args:
            message: Human-readable error message.
            code: Error code for programmatic handling.
            status_code: HTTP status code (default: 500).
            metadata: Additional error context.
        """
        self.code = code
        self.message = message
        super().__init__(
            status_code=status_code,
            detail=message,
            type=code.lower().replace("_", "-"),
            extra=metadata or {},
        )


class StorageNotConfiguredError(StorageError):
    """Raised when a backend cannot be built from the current configuration."""

    def __init__(
        self,
        message: str = "Storage is not configured",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_NOT_CONFIGURED",
            status_code=503,
            metadata=metadata,
        )


class NotReadyError(StorageError):
    """Raised when the engine is not initialized and initialization failed.

    Fatal until an operator fixes the configuration: retrying the same call
    without intervention fails the same way.
    """

    def __init__(
        self,
        message: str = "Storage engine is not ready",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_NOT_READY",
            status_code=503,
            metadata=metadata,
        )


class IntegrityFailureError(StorageError):
    """Raised when retrieved bytes do not match the recorded checksum.

    The affected object must not be returned to the caller.
    """

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_INTEGRITY_FAILURE",
            status_code=500,
            metadata=metadata,
        )


class BackendError(StorageError):
    """A backend adapter operation failed.

    Wraps the provider's native error (``cause``) with the logical key for
    traceability.

    Example:
        ```python
        raise BackendError(
            f"Put failed for {key}",
            key=key,
            cause=native_error,
            metadata={"region": region.id},
        )
        ```
    """

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        cause: BaseException | None = None,
        code: str = "STORAGE_BACKEND_ERROR",
        status_code: int = 502,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.key = key
        self.cause = cause
        metadata = dict(metadata or {})
        if key is not None:
            metadata.setdefault("key", key)
        if cause is not None:
            metadata.setdefault("cause", f"{type(cause).__name__}: {cause}")
        super().__init__(
            message=message,
            code=code,
            status_code=status_code,
            metadata=metadata,
        )


class BackendUnavailableError(BackendError):
    """Transient transport or provider failure. Retryable by the caller."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            key=key,
            cause=cause,
            code="STORAGE_BACKEND_UNAVAILABLE",
            status_code=503,
            metadata=metadata,
        )


class StorageTimeoutError(BackendError):
    """A backend call exceeded its time budget. Retry with backoff."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            key=key,
            cause=cause,
            code="STORAGE_TIMEOUT",
            status_code=504,
            metadata=metadata,
        )


class StorageFileNotFoundError(BackendError):
    """The requested object does not exist in the backend."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            key=key,
            cause=cause,
            code="STORAGE_NOT_FOUND",
            status_code=404,
            metadata=metadata,
        )


class StoragePermissionError(BackendError):
    """The backend rejected the credentials or the operation."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            key=key,
            cause=cause,
            code="STORAGE_PERMISSION_DENIED",
            status_code=403,
            metadata=metadata,
        )


class StorageValidationError(BackendError):
    """The backend rejected the request as malformed."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            key=key,
            cause=cause,
            code="STORAGE_VALIDATION_ERROR",
            status_code=400,
            metadata=metadata,
        )


_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "404", "NotFound"})
_PERMISSION_CODES = frozenset(
    {
        "AccessDenied",
        "ExpiredToken",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "InvalidToken",
        "TokenRefreshRequired",
    }
)
_TIMEOUT_CODES = frozenset({"RequestTimeout", "RequestTimeTooSkewed"})
_UNAVAILABLE_CODES = frozenset(
    {"SlowDown", "ServiceUnavailable", "InternalError", "503", "500", "Throttling"}
)
_VALIDATION_CODES = frozenset(
    {
        "InvalidRequest",
        "InvalidArgument",
        "MalformedXML",
        "InvalidBucketName",
        "InvalidObjectState",
        "KeyTooLongError",
        "MetadataTooLarge",
    }
)


def map_boto_error(
    error: ClientError,
    operation: str,
    key: str | None = None,
    region: str | None = None,
) -> BackendError:
    """Map a botocore ClientError to a domain-specific BackendError.

    Args:
        error: The botocore ClientError to map.
        operation: The backend operation being performed ("put", "get", "delete").
        key: Object key being operated on.
        region: Region id the call targeted.

    Returns:
        BackendError subclass matching the AWS error code.

    Error Code Mappings:
        - NoSuchKey, NoSuchBucket -> StorageFileNotFoundError (404)
        - AccessDenied, ExpiredToken, ... -> StoragePermissionError (403)
        - RequestTimeout, RequestTimeTooSkewed -> StorageTimeoutError (504)
        - SlowDown, ServiceUnavailable, InternalError -> BackendUnavailableError (503)
        - InvalidRequest, InvalidArgument, ... -> StorageValidationError (400)
        - Others -> BackendError (502)
    """
    error_info = error.response.get("Error", {})
    error_code = error_info.get("Code", "Unknown")
    error_message = error_info.get("Message", str(error))

    metadata: dict[str, Any] = {
        "operation": operation,
        "aws_error_code": error_code,
        "aws_error_message": error_message,
        "request_id": error.response.get("ResponseMetadata", {}).get("RequestId"),
    }
    if region:
        metadata["region"] = region

    message = f"{operation.capitalize()} failed: {error_message}"

    if error_code in _NOT_FOUND_CODES:
        return StorageFileNotFoundError(message, key=key, cause=error, metadata=metadata)
    if error_code in _PERMISSION_CODES:
        return StoragePermissionError(message, key=key, cause=error, metadata=metadata)
    if error_code in _TIMEOUT_CODES:
        return StorageTimeoutError(
            f"{operation.capitalize()} timed out: {error_message}",
            key=key,
            cause=error,
            metadata=metadata,
        )
    if error_code in _UNAVAILABLE_CODES:
        return BackendUnavailableError(message, key=key, cause=error, metadata=metadata)
    if error_code in _VALIDATION_CODES:
        return StorageValidationError(message, key=key, cause=error, metadata=metadata)

    return BackendError(message, key=key, cause=error, metadata=metadata)
