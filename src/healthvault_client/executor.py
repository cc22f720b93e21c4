"""
Request execution pipeline.

One ``execute`` call builds and signs the envelope, sends it, classifies the
response, retries idempotent calls after transport failures, and recovers
once from an expired session.
"""

import asyncio
import logging
from typing import Optional, Union
from uuid import UUID

from .config import RETRY_BACKOFF_FACTOR, HealthVaultConfiguration
from .errors import (
    HealthServiceAuthenticationExpiredError,
    HealthServiceTransportError,
    HealthVaultAuthenticationError,
)
from .request import (
    CONTENT_TYPE,
    IDEMPOTENT_METHODS,
    WILDCAT_PATH,
    HealthServiceRequest,
    HealthServiceResponseData,
)
from .response import classify
from .session import SessionCredential, SessionCredentialCache
from .transport import Transport, TransportResponse

logger = logging.getLogger(__name__)

# HTTP statuses worth resending for idempotent methods
TRANSIENT_HTTP_STATUSES = frozenset({502, 503, 504})


def _is_transient(error: HealthServiceTransportError) -> bool:
    return error.http_status is None or error.http_status in TRANSIENT_HTTP_STATUSES


class RequestExecutor:
    """Sends signed method calls for one connection."""

    def __init__(
        self,
        config: HealthVaultConfiguration,
        transport: Transport,
        credentials: SessionCredentialCache,
    ):
        self._config = config
        self._transport = transport
        self._credentials = credentials
        self.endpoint = config.service_url.rstrip("/") + "/" + WILDCAT_PATH

    async def execute(
        self,
        method_name: str,
        method_version: int,
        parameters: Union[str, bytes, None] = None,
        *,
        record_id: Optional[UUID] = None,
        idempotent: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> HealthServiceResponseData:
        """
        Execute a platform method.

        Args:
            method_name: Platform method, e.g. ``GetThings``.
            method_version: Method version number.
            parameters: Serialized ``info`` content (an XML fragment).
            record_id: Target record, if the method is record-scoped.
            idempotent: Whether transport failures may be retried. Defaults
                        to True for known read-only methods.
            timeout: Overall deadline in seconds, including retries.

        Returns:
            HealthServiceResponseData with the raw response XML.

        Raises:
            HealthServiceError: The service rejected the call.
            HealthServiceTransportError: No usable response was received.
            HealthVaultAuthenticationError: The session could not be renewed.
        """
        request = HealthServiceRequest(method_name, method_version, parameters, record_id)
        if timeout is None:
            return await self._execute_with_refresh(request, idempotent)
        try:
            return await asyncio.wait_for(self._execute_with_refresh(request, idempotent), timeout)
        except asyncio.TimeoutError as e:
            raise HealthServiceTransportError(
                f"{method_name} did not complete within {timeout}s"
            ) from e

    async def _execute_with_refresh(
        self,
        request: HealthServiceRequest,
        idempotent: Optional[bool],
    ) -> HealthServiceResponseData:
        credential = None if request.is_anonymous else self._credentials.current()
        try:
            return await self._send_with_retry(request, credential, idempotent)
        except HealthServiceAuthenticationExpiredError as e:
            if request.is_anonymous:
                raise HealthVaultAuthenticationError(
                    f"{request.method_name} rejected the application credential: {e}",
                    e.status_code,
                ) from e
            logger.info(f"{request.method_name}: session expired ({e.error_id}), refreshing")

        credential = await self._credentials.refresh(stale=credential)
        try:
            return await self._send_with_retry(request, credential, idempotent)
        except HealthServiceAuthenticationExpiredError as e:
            raise HealthVaultAuthenticationError(
                f"{request.method_name}: session rejected again after refresh ({e.error_id})",
                e.status_code,
            ) from e

    async def _send_with_retry(
        self,
        request: HealthServiceRequest,
        credential: Optional[SessionCredential],
        idempotent: Optional[bool],
    ) -> HealthServiceResponseData:
        if idempotent is None:
            idempotent = request.method_name in IDEMPOTENT_METHODS
        attempts = 1 + (max(self._config.max_retries, 0) if idempotent else 0)
        delay = self._config.retry_delay

        attempt = 1
        while True:
            try:
                return await self._send_once(request, credential)
            except HealthServiceTransportError as e:
                if attempt >= attempts or not _is_transient(e):
                    raise
                logger.warning(
                    f"{request.method_name} attempt {attempt}/{attempts} failed: {e}. "
                    f"Retrying in {delay}s..."
                )
            await asyncio.sleep(delay)
            delay = min(delay * RETRY_BACKOFF_FACTOR, self._config.retry_delay_max)
            attempt += 1

    async def _send_once(
        self,
        request: HealthServiceRequest,
        credential: Optional[SessionCredential],
    ) -> HealthServiceResponseData:
        # Rebuilt per attempt so msg-time and signature track the credential in use
        body = request.build(self._config, credential)
        logger.debug(f"Sending {request!r} to {self.endpoint}")
        try:
            response = await self._transport.send(
                self.endpoint,
                body,
                {"Content-Type": CONTENT_TYPE},
                self._config.request_timeout,
            )
        except OSError as e:
            raise HealthServiceTransportError(f"{request.method_name} failed: {e}") from e
        return self._handle_response(request, response)

    def _handle_response(
        self,
        request: HealthServiceRequest,
        response: TransportResponse,
    ) -> HealthServiceResponseData:
        payload = classify(response.body, response.headers, request)
        if response.status >= 400:
            raise HealthServiceTransportError(
                f"{request.method_name} failed with HTTP {response.status}",
                http_status=response.status,
            )
        return HealthServiceResponseData(payload, request.response_id)
