"""
HTTP transport for HealthVault requests.

``Transport`` is the boundary the executor talks to: send bytes with
headers to a URL, get back status, headers and body. ``AiohttpTransport``
is the default implementation, with SSL context and timeout helpers.
"""

import asyncio
import logging
import os
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import BinaryIO, Mapping, Optional, Union

import aiohttp

from .errors import HealthServiceTransportError

logger = logging.getLogger(__name__)


def _get_bool_env(name: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(name, "").lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


# Default to True for security, allow override via environment
VERIFY_SSL_DEFAULT = _get_bool_env("HEALTHVAULT_VERIFY_SSL", True)
ALLOW_INSECURE = _get_bool_env("HEALTHVAULT_ALLOW_INSECURE", False)
CA_BUNDLE_DEFAULT = os.environ.get("HEALTHVAULT_CA_BUNDLE", "")

USER_AGENT = "healthvault-client"


@dataclass
class TransportResponse:
    """Raw HTTP response handed to the response classifier."""
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Union[bytes, BinaryIO] = b""


class Transport(ABC):
    """Sends a request body and returns the raw response."""

    @abstractmethod
    async def send(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        timeout: float,
    ) -> TransportResponse:
        """
        Send one request.

        Raises:
            HealthServiceTransportError: If no response was received.
        """

    async def close(self) -> None:
        """Release any pooled connections."""


def create_ssl_context(
    verify: Optional[bool] = None,
    ca_bundle: Optional[str] = None,
) -> ssl.SSLContext:
    """
    Create an SSL context for service connections.

    Args:
        verify: Whether to verify SSL certificates. If None, uses
                HEALTHVAULT_VERIFY_SSL environment variable (default: True).
        ca_bundle: Path to a custom CA certificate file. If None, uses
                   HEALTHVAULT_CA_BUNDLE environment variable.

    Returns:
        ssl.SSLContext for HTTPS requests.

    Note:
        Disabling verification requires both HEALTHVAULT_VERIFY_SSL=false and
        HEALTHVAULT_ALLOW_INSECURE=1. Without ALLOW_INSECURE the request is
        ignored and a warning is logged.
    """
    if verify is None:
        verify = VERIFY_SSL_DEFAULT

    ssl_ctx = ssl.create_default_context()

    if not verify:
        if ALLOW_INSECURE:
            ssl_ctx.check_hostname = False
            ssl_ctx.verify_mode = ssl.CERT_NONE
            logger.warning(
                "TLS certificate verification is DISABLED for HealthVault requests. "
                "Use HEALTHVAULT_CA_BUNDLE for a safer alternative."
            )
        else:
            logger.warning(
                "HEALTHVAULT_VERIFY_SSL=false ignored: "
                "set HEALTHVAULT_ALLOW_INSECURE=1 to confirm"
            )

    effective_ca_bundle = ca_bundle or CA_BUNDLE_DEFAULT
    if effective_ca_bundle:
        ssl_ctx.load_verify_locations(cafile=effective_ca_bundle)

    return ssl_ctx


def create_request_timeout(timeout: float) -> aiohttp.ClientTimeout:
    """ClientTimeout bounding a whole request/response exchange."""
    return aiohttp.ClientTimeout(total=timeout, sock_connect=timeout)


class AiohttpTransport(Transport):
    """Transport backed by a lazily created ``aiohttp.ClientSession``."""

    def __init__(
        self,
        verify_ssl: Optional[bool] = None,
        ca_bundle: Optional[str] = None,
    ):
        self._verify_ssl = verify_ssl
        self._ca_bundle = ca_bundle
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            ssl_context = create_ssl_context(verify=self._verify_ssl, ca_bundle=self._ca_bundle)
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=ssl_context),
                headers={"User-Agent": USER_AGENT},
            )
        return self._session

    async def send(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        timeout: float,
    ) -> TransportResponse:
        session = self._get_session()
        try:
            async with session.post(
                url,
                data=body,
                headers=dict(headers),
                timeout=create_request_timeout(timeout),
            ) as resp:
                data = await resp.read()
                return TransportResponse(resp.status, dict(resp.headers), data)
        except asyncio.TimeoutError as e:
            raise HealthServiceTransportError(f"Request to {url} timed out after {timeout}s") from e
        except aiohttp.ClientError as e:
            raise HealthServiceTransportError(f"Request to {url} failed: {e}") from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
