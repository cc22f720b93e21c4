"""
Authenticated connection to HealthVault.

A ``HealthVaultConnection`` is bound to one locked configuration. It owns the
transport, the session credential cache and the request executor, and
exposes capability clients such as ``connection.platform``.
"""

import base64
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from uuid import UUID

from lxml import etree

from .config import HealthVaultConfiguration
from .errors import HealthVaultAuthenticationError
from .executor import RequestExecutor
from .platform_client import PlatformClient
from .request import HealthServiceResponseData, HealthVaultMethods
from .session import SESSION_TOKEN_LIFETIME, SessionCredential, SessionCredentialCache
from .signing import HMAC_ALGORITHM, canonicalize
from .transport import AiohttpTransport, Transport

logger = logging.getLogger(__name__)

SHARED_SECRET_BYTES = 32
CAST_METHOD_VERSION = 2


def _build_session_content(app_id: UUID, shared_secret: bytes, signing_time: datetime) -> etree._Element:
    content = etree.Element("content")
    etree.SubElement(content, "app-id").text = str(app_id)
    etree.SubElement(content, "hmac").text = HMAC_ALGORITHM
    etree.SubElement(content, "signing-time").text = signing_time.strftime("%Y-%m-%dT%H:%M:%SZ")
    secret_el = etree.SubElement(etree.SubElement(content, "shared-secret"), "hmac-alg")
    secret_el.set("algName", HMAC_ALGORITHM)
    secret_el.text = base64.b64encode(shared_secret).decode("ascii")
    return content


def _find_token(response: HealthServiceResponseData) -> Optional[str]:
    info = response.info
    if info is None:
        return None
    for elem in info.iter():
        if isinstance(elem.tag, str) and etree.QName(elem).localname == "token":
            return (elem.text or "").strip() or None
    return None


class HealthVaultConnection:
    """Authenticated handle used to issue calls."""

    def __init__(
        self,
        config: HealthVaultConfiguration,
        transport: Optional[Transport] = None,
    ):
        self.config = config
        self.transport = transport or AiohttpTransport(
            verify_ssl=config.verify_ssl, ca_bundle=config.ca_bundle
        )
        self.session = SessionCredentialCache(self._create_session_token)
        self.executor = RequestExecutor(config, self.transport, self.session)
        self._platform: Optional[PlatformClient] = None

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    @property
    def platform(self) -> PlatformClient:
        """Client for platform-level methods (service definition, instances)."""
        if self._platform is None:
            self._platform = PlatformClient(self)
        return self._platform

    async def authenticate(self) -> SessionCredential:
        """Run the session handshake and store the resulting credential."""
        return await self.session.refresh()

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
        """Execute a platform method. See ``RequestExecutor.execute``."""
        return await self.executor.execute(
            method_name,
            method_version,
            parameters,
            record_id=record_id,
            idempotent=idempotent,
            timeout=timeout,
        )

    async def close(self) -> None:
        self.session.cancel_refresh()
        await self.transport.close()

    async def _create_session_token(self) -> SessionCredential:
        """CreateAuthenticatedSessionToken handshake signed by the application credential."""
        app_credential = self.config.application_credential
        if app_credential is None:
            raise HealthVaultAuthenticationError("No application credential is configured")

        shared_secret = secrets.token_bytes(SHARED_SECRET_BYTES)
        now = datetime.now(timezone.utc)
        content = _build_session_content(self.config.master_application_id, shared_secret, now)
        signature = app_credential.sign_content(canonicalize(content))

        auth_info = etree.Element("auth-info")
        etree.SubElement(auth_info, "app-id").text = str(self.config.master_application_id)
        appserver = etree.SubElement(etree.SubElement(auth_info, "credential"), "appserver2")
        sig = etree.SubElement(appserver, "sig")
        sig.set("sigMethod", signature.algorithm)
        if signature.thumbprint:
            sig.set("thumbprint", signature.thumbprint)
        sig.text = signature.value
        appserver.append(content)

        logger.info(f"Creating session for application {self.config.master_application_id}")
        response = await self.executor.execute(
            HealthVaultMethods.CREATE_AUTHENTICATED_SESSION_TOKEN,
            CAST_METHOD_VERSION,
            etree.tostring(auth_info),
            idempotent=True,
        )
        token = _find_token(response)
        if not token:
            raise HealthVaultAuthenticationError(
                "CreateAuthenticatedSessionToken returned no session token"
            )
        return SessionCredential(
            token=token,
            shared_secret=shared_secret,
            expires_at=now + timedelta(seconds=SESSION_TOKEN_LIFETIME),
        )
