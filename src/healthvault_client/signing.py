"""
Request signing for HealthVault.

Session-authenticated requests carry an HMAC-SHA256 over the canonical
``header`` element, keyed with the session shared secret. The
``CreateAuthenticatedSessionToken`` handshake is instead signed with an
application credential (an RSA key pair or a pre-shared secret).
"""

import base64
import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from lxml import etree

from .errors import InvalidCredentialError

if TYPE_CHECKING:
    from .session import SessionCredential

HMAC_ALGORITHM = "HMACSHA256"
HASH_ALGORITHM = "SHA256"
RSA_ALGORITHM = "RSA-SHA256"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


@dataclass(frozen=True)
class SignatureBlock:
    """A computed signature: algorithm name plus base64 value."""
    algorithm: str
    value: str
    thumbprint: Optional[str] = None


def canonicalize(xml: Union[bytes, str, etree._Element]) -> bytes:
    """Return the C14N form of an element or XML document."""
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    if isinstance(xml, bytes):
        xml = etree.fromstring(xml, _PARSER)
    return etree.tostring(xml, method="c14n", exclusive=True)


def _hmac_sha256(key: bytes, data: bytes) -> str:
    digest = hmac.new(key, data, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def compute_info_hash(info: Union[bytes, str, etree._Element]) -> str:
    """Base64 SHA-256 of the canonical ``info`` section."""
    digest = hashlib.sha256(canonicalize(info)).digest()
    return base64.b64encode(digest).decode("ascii")


def sign(body: Union[bytes, str, etree._Element], credential: "SessionCredential") -> SignatureBlock:
    """
    Sign a request header with a session credential.

    Args:
        body: The ``header`` element (or its serialized form).
        credential: Session credential holding the shared secret.

    Returns:
        SignatureBlock with the HMAC-SHA256 of the canonical body.

    Raises:
        InvalidCredentialError: If the credential has no key material.
    """
    if credential is None or not credential.shared_secret:
        raise InvalidCredentialError("Session credential has no key material to sign with")
    return SignatureBlock(HMAC_ALGORITHM, _hmac_sha256(credential.shared_secret, canonicalize(body)))


class ApplicationCredential(ABC):
    """Credential proving the application's identity during the handshake."""

    @abstractmethod
    def sign_content(self, content: bytes) -> SignatureBlock:
        """Sign the canonical handshake content."""


class CertificateCredential(ApplicationCredential):
    """Application credential backed by an RSA private key."""

    def __init__(self, private_key: rsa.RSAPrivateKey, thumbprint: str):
        if private_key is None:
            raise InvalidCredentialError("Certificate credential requires a private key")
        self._private_key = private_key
        self.thumbprint = thumbprint

    @classmethod
    def from_pem(
        cls,
        pem: bytes,
        thumbprint: str,
        password: Optional[bytes] = None,
    ) -> "CertificateCredential":
        """Load the private key from PEM data."""
        key = serialization.load_pem_private_key(pem, password=password)
        if not isinstance(key, rsa.RSAPrivateKey):
            raise InvalidCredentialError("Application certificate key must be RSA")
        return cls(key, thumbprint)

    def sign_content(self, content: bytes) -> SignatureBlock:
        signature = self._private_key.sign(content, padding.PKCS1v15(), hashes.SHA256())
        return SignatureBlock(
            RSA_ALGORITHM,
            base64.b64encode(signature).decode("ascii"),
            thumbprint=self.thumbprint,
        )


class SharedSecretCredential(ApplicationCredential):
    """Application credential backed by a secret shared with the service."""

    def __init__(self, secret: bytes):
        if not secret:
            raise InvalidCredentialError("Shared secret must not be empty")
        self._secret = secret

    def sign_content(self, content: bytes) -> SignatureBlock:
        return SignatureBlock(HMAC_ALGORITHM, _hmac_sha256(self._secret, content))
