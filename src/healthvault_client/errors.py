"""
Error taxonomy for the HealthVault client.

Every failure that crosses the public API is one of the classes below.
Service-reported failures are resolved from the numeric status code in the
response envelope through ``STATUS_CODE_EXCEPTIONS``.
"""

from enum import IntEnum
from typing import Optional, Sequence
from uuid import UUID


class HealthVaultError(Exception):
    """Base class for all client errors."""


class InvalidStateError(HealthVaultError, RuntimeError):
    """A factory or configuration was used out of order."""


class MissingRequiredPropertiesError(HealthVaultError):
    """One or more mandatory configuration values are unset."""

    def __init__(self, missing_properties: Sequence[str]):
        self.missing_properties = list(missing_properties)
        super().__init__(
            "Missing required properties: " + ", ".join(self.missing_properties)
        )


class NotAuthenticatedError(HealthVaultError):
    """No session credential has been established yet."""


class InvalidCredentialError(HealthVaultError):
    """A credential has no usable key material."""


class HealthVaultAuthenticationError(HealthVaultError):
    """Authentication failed and cannot be recovered by refreshing."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HealthServiceTransportError(HealthVaultError):
    """The request never produced a response (connection, DNS, timeout)."""

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class HealthServiceStatusCode(IntEnum):
    """Status codes returned in ``response/status/code``."""

    OK = 0
    FAILED = 1
    BAD_HTTP = 2
    INVALID_XML = 3
    INVALID_REQUEST_SIGNATURE = 4
    INVALID_METHOD = 5
    INVALID_APPLICATION = 6
    CREDENTIAL_TOKEN_EXPIRED = 7
    INVALID_TOKEN = 8
    INVALID_PERSON = 9
    INVALID_RECORD = 10
    ACCESS_DENIED = 11
    INVALID_VERSION = 12
    REQUEST_TIMED_OUT = 49
    AUTHENTICATED_SESSION_TOKEN_EXPIRED = 65
    INVALID_RECORD_STATE = 66
    RECORD_QUOTA_EXCEEDED = 67
    EMAIL_NOT_VALIDATED = 82
    DUPLICATE_CREDENTIAL_FOUND = 115
    INVALID_APPLICATION_AUTHORIZATION = 130


def status_code_name(code: int) -> str:
    """Return the symbolic name for a status code, or ``UNKNOWN_<code>``."""
    try:
        return HealthServiceStatusCode(code).name
    except ValueError:
        return f"UNKNOWN_{code}"


class HealthServiceResponseError:
    """The ``error`` block of a failed response."""

    def __init__(
        self,
        message: str = "",
        context: Optional[dict[str, str]] = None,
        error_info: Optional[str] = None,
    ):
        self.message = message
        self.context = context or {}
        self.error_info = error_info

    def __repr__(self) -> str:
        return f"HealthServiceResponseError(message={self.message!r})"


class HealthServiceError(HealthVaultError):
    """The service answered with a non-OK status code."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        error: Optional[HealthServiceResponseError] = None,
        response_id: Optional[UUID] = None,
    ):
        self.status_code = status_code
        self.error_id = status_code_name(status_code)
        self.error = error or HealthServiceResponseError(message)
        self.error_info = self.error.error_info
        self.response_id = response_id
        super().__init__(message or f"HealthVault returned status {self.error_id}")

    @property
    def message(self) -> str:
        return str(self)


class HealthServiceInvalidXmlError(HealthServiceError):
    pass


class HealthServiceInvalidRequestSignatureError(HealthServiceError):
    pass


class HealthServiceInvalidApplicationError(HealthServiceError):
    pass


class HealthServiceAuthenticationExpiredError(HealthServiceError):
    """Base for statuses that are recovered by refreshing the session once."""


class HealthServiceCredentialTokenExpiredError(HealthServiceAuthenticationExpiredError):
    pass


class HealthServiceAuthenticatedSessionTokenExpiredError(HealthServiceAuthenticationExpiredError):
    pass


class HealthServiceInvalidPersonError(HealthServiceError):
    pass


class HealthServiceInvalidRecordError(HealthServiceError):
    pass


class HealthServiceAccessDeniedError(HealthServiceError):
    pass


class HealthServiceRequestTimedOutError(HealthServiceError):
    pass


class HealthServiceInvalidRecordStateError(HealthServiceError):
    pass


class HealthServiceRecordQuotaExceededError(HealthServiceError):
    pass


class HealthServiceEmailNotValidatedError(HealthServiceError):
    pass


class HealthServiceDuplicateCredentialError(HealthServiceError):
    pass


class HealthServiceInvalidApplicationAuthorizationError(HealthServiceError):
    pass


# Every defined status code resolves to a class; anything else is generic.
STATUS_CODE_EXCEPTIONS: dict[int, type[HealthServiceError]] = {
    HealthServiceStatusCode.FAILED: HealthServiceError,
    HealthServiceStatusCode.BAD_HTTP: HealthServiceError,
    HealthServiceStatusCode.INVALID_XML: HealthServiceInvalidXmlError,
    HealthServiceStatusCode.INVALID_REQUEST_SIGNATURE: HealthServiceInvalidRequestSignatureError,
    HealthServiceStatusCode.INVALID_METHOD: HealthServiceError,
    HealthServiceStatusCode.INVALID_APPLICATION: HealthServiceInvalidApplicationError,
    HealthServiceStatusCode.CREDENTIAL_TOKEN_EXPIRED: HealthServiceCredentialTokenExpiredError,
    HealthServiceStatusCode.INVALID_TOKEN: HealthServiceError,
    HealthServiceStatusCode.INVALID_PERSON: HealthServiceInvalidPersonError,
    HealthServiceStatusCode.INVALID_RECORD: HealthServiceInvalidRecordError,
    HealthServiceStatusCode.ACCESS_DENIED: HealthServiceAccessDeniedError,
    HealthServiceStatusCode.INVALID_VERSION: HealthServiceError,
    HealthServiceStatusCode.REQUEST_TIMED_OUT: HealthServiceRequestTimedOutError,
    HealthServiceStatusCode.AUTHENTICATED_SESSION_TOKEN_EXPIRED: (
        HealthServiceAuthenticatedSessionTokenExpiredError
    ),
    HealthServiceStatusCode.INVALID_RECORD_STATE: HealthServiceInvalidRecordStateError,
    HealthServiceStatusCode.RECORD_QUOTA_EXCEEDED: HealthServiceRecordQuotaExceededError,
    HealthServiceStatusCode.EMAIL_NOT_VALIDATED: HealthServiceEmailNotValidatedError,
    HealthServiceStatusCode.DUPLICATE_CREDENTIAL_FOUND: HealthServiceDuplicateCredentialError,
    HealthServiceStatusCode.INVALID_APPLICATION_AUTHORIZATION: (
        HealthServiceInvalidApplicationAuthorizationError
    ),
}


def get_health_service_exception(
    status_code: int,
    error: Optional[HealthServiceResponseError] = None,
    response_id: Optional[UUID] = None,
) -> HealthServiceError:
    """
    Build the exception for a non-OK status code.

    Args:
        status_code: Numeric code from the response envelope.
        error: Parsed ``error`` block, if the response had one.
        response_id: Correlation id from the ``WC_ResponseId`` header.

    Returns:
        An instance of the mapped ``HealthServiceError`` subclass.
    """
    exc_class = STATUS_CODE_EXCEPTIONS.get(status_code, HealthServiceError)
    message = error.message if error else ""
    return exc_class(status_code, message, error=error, response_id=response_id)
