"""
Exception classes for BosStorage SDK
"""

from enum import Enum
from typing import Dict, Optional, Type


class ErrorKind(str, Enum):
    """Classification carried by every BosStorage error."""

    INVALID_CREDENTIAL = "InvalidCredential"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    ACCESS_DENIED = "AccessDenied"
    NO_SUCH_BUCKET = "NoSuchBucket"
    NO_SUCH_KEY = "NoSuchKey"
    NO_SUCH_UPLOAD = "NoSuchUpload"
    INVALID_PART = "InvalidPart"
    ENTITY_TOO_SMALL = "EntityTooSmall"
    INVALID_EXPIRATION = "InvalidExpiration"
    EXPIRATION_TOO_LARGE = "ExpirationTooLarge"
    CLOCK_SKEW = "ClockSkew"
    INVALID_SESSION_STATE = "InvalidSessionState"
    INVALID_ARGUMENT = "InvalidArgument"
    SERVICE_ERROR = "ServiceError"


class BosStorageException(Exception):
    """
    Base exception for all BosStorage SDK errors.
    """

    kind = ErrorKind.SERVICE_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = None,
        error_code: str = None,
        request_id: str = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.kind.value
        self.request_id = request_id


class InvalidCredentialException(BosStorageException, ValueError):
    """Thrown when the access key id or secret key is empty or malformed."""

    kind = ErrorKind.INVALID_CREDENTIAL


class AuthenticationException(BosStorageException):
    """Thrown when a signature does not match or is outside its validity window."""

    kind = ErrorKind.AUTHENTICATION_FAILED

    def __init__(self, message: str, status_code: int = 403, error_code: str = None, request_id: str = None):
        super().__init__(message, status_code, error_code, request_id)


class AccessDeniedException(BosStorageException):
    """Thrown when access is denied."""

    kind = ErrorKind.ACCESS_DENIED

    def __init__(self, message: str, status_code: int = 403, error_code: str = None, request_id: str = None):
        super().__init__(message, status_code, error_code, request_id)


class BucketNotFoundException(BosStorageException):
    """Thrown when a bucket is not found."""

    kind = ErrorKind.NO_SUCH_BUCKET

    def __init__(self, message: str, status_code: int = 404, error_code: str = None, request_id: str = None):
        super().__init__(message, status_code, error_code, request_id)


class ObjectNotFoundException(BosStorageException):
    """Thrown when an object is not found."""

    kind = ErrorKind.NO_SUCH_KEY

    def __init__(self, message: str, status_code: int = 404, error_code: str = None, request_id: str = None):
        super().__init__(message, status_code, error_code, request_id)


class UploadNotFoundException(BosStorageException):
    """Thrown when a multipart upload does not exist or is already terminal."""

    kind = ErrorKind.NO_SUCH_UPLOAD

    def __init__(self, message: str, status_code: int = 404, error_code: str = None, request_id: str = None):
        super().__init__(message, status_code, error_code, request_id)


class InvalidPartException(BosStorageException):
    """Thrown when completion names a part that does not match the uploaded inventory."""

    kind = ErrorKind.INVALID_PART

    def __init__(self, message: str, status_code: int = 400, error_code: str = None, request_id: str = None):
        super().__init__(message, status_code, error_code, request_id)


class EntityTooSmallException(BosStorageException):
    """Thrown when a non-final part is below the minimum part size."""

    kind = ErrorKind.ENTITY_TOO_SMALL

    def __init__(self, message: str, status_code: int = 400, error_code: str = None, request_id: str = None):
        super().__init__(message, status_code, error_code, request_id)


class InvalidExpirationException(BosStorageException, ValueError):
    """Thrown when a signature expiration is zero, negative or out of policy."""

    kind = ErrorKind.INVALID_EXPIRATION


class ExpirationTooLargeException(InvalidExpirationException):
    """Thrown when a presigned URL expiration exceeds the configured maximum."""

    kind = ErrorKind.EXPIRATION_TOO_LARGE


class ClockSkewException(BosStorageException, ValueError):
    """Thrown when a signing timestamp cannot be interpreted."""

    kind = ErrorKind.CLOCK_SKEW


class InvalidSessionStateException(BosStorageException):
    """Thrown when an upload session is asked to leave a terminal state."""

    kind = ErrorKind.INVALID_SESSION_STATE


class InvalidArgumentException(BosStorageException, ValueError):
    """Thrown when a request argument is rejected before anything is sent."""

    kind = ErrorKind.INVALID_ARGUMENT


class ServerException(BosStorageException):
    """Thrown when the server returns an error."""

    def __init__(self, message: str, status_code: int, error_code: str = None, request_id: str = None):
        super().__init__(message, status_code, error_code, request_id)


_SERVICE_ERRORS: Dict[str, Type[BosStorageException]] = {
    "AccessDenied": AccessDeniedException,
    "SignatureDoesNotMatch": AuthenticationException,
    "InvalidAccessKeyId": AuthenticationException,
    "RequestExpired": AuthenticationException,
    "RequestTimeTooSkewed": AuthenticationException,
    "AuthenticationFailed": AuthenticationException,
    "NoSuchBucket": BucketNotFoundException,
    "NoSuchKey": ObjectNotFoundException,
    "NoSuchUpload": UploadNotFoundException,
    "InvalidPart": InvalidPartException,
    "InvalidPartOrder": InvalidPartException,
    "EntityTooSmall": EntityTooSmallException,
}


def error_from_response(
    status_code: int,
    error_code: Optional[str],
    message: Optional[str],
    request_id: Optional[str] = None,
) -> BosStorageException:
    """Classify a service error response, keeping the code and message verbatim."""
    if not message:
        message = f"Request failed with status {status_code}"
        if status_code == 404:
            message = "Resource not found"

    exc_class = _SERVICE_ERRORS.get(error_code or "")
    if exc_class is None:
        if status_code == 403 and not error_code:
            exc_class = AccessDeniedException
        else:
            return ServerException(message, status_code, error_code, request_id)

    return exc_class(message, status_code=status_code, error_code=error_code, request_id=request_id)
