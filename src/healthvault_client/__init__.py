"""
Client library for the HealthVault XML platform.

Applications configure a ``HealthVaultConnectionFactory`` once and obtain an
authenticated ``HealthVaultConnection`` from it; every call made through the
connection is signed with the current session and renewed transparently
when the session lapses.
"""

__version__ = "0.1.0"

from .errors import (
    HealthVaultError,
    InvalidStateError,
    MissingRequiredPropertiesError,
    NotAuthenticatedError,
    InvalidCredentialError,
    HealthVaultAuthenticationError,
    HealthServiceTransportError,
    HealthServiceStatusCode,
    HealthServiceResponseError,
    HealthServiceError,
    HealthServiceAuthenticationExpiredError,
    HealthServiceCredentialTokenExpiredError,
    HealthServiceAuthenticatedSessionTokenExpiredError,
    HealthServiceAccessDeniedError,
    HealthServiceInvalidApplicationError,
    HealthServiceInvalidRecordError,
    HealthServiceInvalidPersonError,
    STATUS_CODE_EXCEPTIONS,
    get_health_service_exception,
)
from .signing import (
    SignatureBlock,
    ApplicationCredential,
    CertificateCredential,
    SharedSecretCredential,
    compute_info_hash,
    sign,
)
from .config import HealthVaultConfiguration, get_int_env
from .session import SessionCredential, SessionCredentialCache, redact_token
from .transport import Transport, TransportResponse, AiohttpTransport, create_ssl_context
from .request import (
    HealthServiceRequest,
    HealthServiceResponseData,
    HealthVaultMethods,
)
from .response import classify, get_response_id
from .executor import RequestExecutor
from .platform_client import (
    PlatformClient,
    Location,
    ServiceDefinition,
    ServiceInfoSections,
    HealthServiceInstance,
)
from .connection import HealthVaultConnection
from .factory import HealthVaultConnectionFactory
from .urls import (
    action_url,
    blob_stream_url,
    health_client_service_url,
    shell_authentication_url,
    shell_redirector_url,
    type_schema_url,
)

__all__ = [
    "__version__",
    # Entry points
    "HealthVaultConnectionFactory",
    "HealthVaultConnection",
    "HealthVaultConfiguration",
    "get_int_env",
    # Errors
    "HealthVaultError",
    "InvalidStateError",
    "MissingRequiredPropertiesError",
    "NotAuthenticatedError",
    "InvalidCredentialError",
    "HealthVaultAuthenticationError",
    "HealthServiceTransportError",
    "HealthServiceStatusCode",
    "HealthServiceResponseError",
    "HealthServiceError",
    "HealthServiceAuthenticationExpiredError",
    "HealthServiceCredentialTokenExpiredError",
    "HealthServiceAuthenticatedSessionTokenExpiredError",
    "HealthServiceAccessDeniedError",
    "HealthServiceInvalidApplicationError",
    "HealthServiceInvalidRecordError",
    "HealthServiceInvalidPersonError",
    "STATUS_CODE_EXCEPTIONS",
    "get_health_service_exception",
    # Signing and credentials
    "SignatureBlock",
    "ApplicationCredential",
    "CertificateCredential",
    "SharedSecretCredential",
    "compute_info_hash",
    "sign",
    "SessionCredential",
    "SessionCredentialCache",
    "redact_token",
    # Transport
    "Transport",
    "TransportResponse",
    "AiohttpTransport",
    "create_ssl_context",
    # Request pipeline
    "HealthServiceRequest",
    "HealthServiceResponseData",
    "HealthVaultMethods",
    "RequestExecutor",
    "classify",
    "get_response_id",
    # Platform methods
    "PlatformClient",
    "Location",
    "ServiceDefinition",
    "ServiceInfoSections",
    "HealthServiceInstance",
    # URL helpers
    "action_url",
    "blob_stream_url",
    "health_client_service_url",
    "shell_authentication_url",
    "shell_redirector_url",
    "type_schema_url",
]
