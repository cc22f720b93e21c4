"""
Request and response envelopes for the HealthVault XML protocol.

A ``HealthServiceRequest`` is built fresh for every attempt of a call: the
``info`` section is hashed, the ``header`` is signed with the current
session credential, and the result is serialized as the POST body.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Union
from uuid import UUID

from lxml import etree

from . import __version__
from .signing import HASH_ALGORITHM, SignatureBlock, compute_info_hash, sign

if TYPE_CHECKING:
    from .config import HealthVaultConfiguration
    from .session import SessionCredential

REQUEST_NAMESPACE = "urn:com.microsoft.wc.request"
RESPONSE_ID_HEADER = "WC_ResponseId"
WILDCAT_PATH = "wildcat.ashx"
CONTENT_TYPE = "text/xml; charset=utf-8"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


class HealthVaultMethods:
    """Platform method names."""
    CREATE_AUTHENTICATED_SESSION_TOKEN = "CreateAuthenticatedSessionToken"
    GET_SERVICE_DEFINITION = "GetServiceDefinition"
    SELECT_INSTANCE = "SelectInstance"
    GET_PERSON_INFO = "GetPersonInfo"
    GET_AUTHORIZED_RECORDS = "GetAuthorizedRecords"
    GET_AUTHORIZED_PEOPLE = "GetAuthorizedPeople"
    GET_THINGS = "GetThings"
    GET_THING_TYPE = "GetThingType"
    GET_VOCABULARY = "GetVocabulary"
    SEARCH_VOCABULARY = "SearchVocabulary"
    PUT_THINGS = "PutThings"
    REMOVE_THINGS = "RemoveThings"


# Methods signed with the application credential instead of a session
ANONYMOUS_METHODS = frozenset({HealthVaultMethods.CREATE_AUTHENTICATED_SESSION_TOKEN})

# Read-only methods that may be resent after a transport failure
IDEMPOTENT_METHODS = frozenset({
    HealthVaultMethods.GET_SERVICE_DEFINITION,
    HealthVaultMethods.SELECT_INSTANCE,
    HealthVaultMethods.GET_PERSON_INFO,
    HealthVaultMethods.GET_AUTHORIZED_RECORDS,
    HealthVaultMethods.GET_AUTHORIZED_PEOPLE,
    HealthVaultMethods.GET_THINGS,
    HealthVaultMethods.GET_THING_TYPE,
    HealthVaultMethods.GET_VOCABULARY,
    HealthVaultMethods.SEARCH_VOCABULARY,
})


def format_msg_time(when: datetime) -> str:
    return when.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class HealthServiceRequest:
    """One logical method call and its diagnostics."""

    def __init__(
        self,
        method_name: str,
        method_version: int,
        parameters: Union[str, bytes, None] = None,
        record_id: Optional[UUID] = None,
    ):
        if not method_name:
            raise ValueError("method_name must not be empty")
        self.method_name = method_name
        self.method_version = method_version
        self.parameters = parameters
        self.record_id = record_id
        self.signature: Optional[SignatureBlock] = None
        self.response_id: Optional[UUID] = None

    @property
    def is_anonymous(self) -> bool:
        return self.method_name in ANONYMOUS_METHODS

    def _build_info(self) -> etree._Element:
        params = self.parameters or b""
        if isinstance(params, str):
            params = params.encode("utf-8")
        try:
            return etree.fromstring(b"<info>" + params + b"</info>", _PARSER)
        except etree.XMLSyntaxError as e:
            raise ValueError(f"Parameters for {self.method_name} are not well-formed XML: {e}") from e

    def _build_header(
        self,
        config: "HealthVaultConfiguration",
        credential: Optional["SessionCredential"],
        info_hash: str,
        msg_time: datetime,
    ) -> etree._Element:
        header = etree.Element("header")
        etree.SubElement(header, "method").text = self.method_name
        etree.SubElement(header, "method-version").text = str(self.method_version)
        if self.record_id is not None:
            etree.SubElement(header, "record-id").text = str(self.record_id)
        if self.is_anonymous:
            etree.SubElement(header, "app-id").text = str(config.master_application_id)
        else:
            auth_session = etree.SubElement(header, "auth-session")
            etree.SubElement(auth_session, "auth-token").text = credential.token if credential else ""
        etree.SubElement(header, "language").text = config.language
        etree.SubElement(header, "country").text = config.country
        etree.SubElement(header, "msg-time").text = format_msg_time(msg_time)
        etree.SubElement(header, "msg-ttl").text = str(config.message_ttl)
        etree.SubElement(header, "version").text = f"healthvault-client/{__version__}"
        hash_el = etree.SubElement(etree.SubElement(header, "info-hash"), "hash-data")
        hash_el.set("algName", HASH_ALGORITHM)
        hash_el.text = info_hash
        return header

    def build(
        self,
        config: "HealthVaultConfiguration",
        credential: Optional["SessionCredential"],
        msg_time: Optional[datetime] = None,
    ) -> bytes:
        """
        Serialize the signed envelope.

        Args:
            config: Locked configuration of the owning connection.
            credential: Session credential; unused for anonymous methods.
            msg_time: Message timestamp (defaults to now).

        Returns:
            UTF-8 encoded request XML.

        Raises:
            InvalidCredentialError: If a session method has no usable credential.
        """
        info = self._build_info()
        header = self._build_header(
            config, credential, compute_info_hash(info), msg_time or datetime.now(timezone.utc)
        )

        root = etree.Element(
            f"{{{REQUEST_NAMESPACE}}}request", nsmap={"wc-request": REQUEST_NAMESPACE}
        )
        if not self.is_anonymous:
            self.signature = sign(header, credential)
            hmac_el = etree.SubElement(etree.SubElement(root, "auth"), "hmac-data")
            hmac_el.set("algName", self.signature.algorithm)
            hmac_el.text = self.signature.value
        root.append(header)
        root.append(info)
        return etree.tostring(root, encoding="utf-8")

    def __repr__(self) -> str:
        return f"HealthServiceRequest({self.method_name!r}, {self.method_version})"


@dataclass
class HealthServiceResponseData:
    """A successful response: the raw XML plus its correlation id."""
    xml: bytes
    response_id: Optional[UUID] = None

    @property
    def info(self) -> Optional[etree._Element]:
        """The response ``info`` element, or None if absent or unparseable."""
        try:
            root = etree.fromstring(self.xml, _PARSER)
        except etree.XMLSyntaxError:
            return None
        if etree.QName(root).localname == "info":
            return root
        for child in root:
            if isinstance(child.tag, str) and etree.QName(child).localname == "info":
                return child
        return None
