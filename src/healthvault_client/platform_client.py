"""
Platform-level methods: service definition and instance selection.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Flag
from typing import TYPE_CHECKING, Optional

from lxml import etree

from .request import HealthVaultMethods

if TYPE_CHECKING:
    from .connection import HealthVaultConnection

GET_SERVICE_DEFINITION_VERSION = 2
SELECT_INSTANCE_VERSION = 1

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_xml_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an xsd:dateTime. Naive values are taken as UTC; bad values give None."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat wants exactly six fractional digits on older interpreters
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _child_text(elem: Optional[etree._Element], name: str) -> Optional[str]:
    if elem is None:
        return None
    for child in elem:
        if isinstance(child.tag, str) and etree.QName(child).localname == name:
            return (child.text or "").strip()
    return None


def _child(elem: Optional[etree._Element], name: str) -> Optional[etree._Element]:
    if elem is None:
        return None
    for child in elem:
        if isinstance(child.tag, str) and etree.QName(child).localname == name:
            return child
    return None


class ServiceInfoSections(Flag):
    """Sections of the service definition to request."""
    PLATFORM = 1
    SHELL = 2
    TOPOLOGY = 4
    XML_OVER_HTTP_METHODS = 8
    MEANINGFUL_USE = 16
    ALL = PLATFORM | SHELL | TOPOLOGY | XML_OVER_HTTP_METHODS | MEANINGFUL_USE


_SECTION_NAMES = {
    ServiceInfoSections.PLATFORM: "platform",
    ServiceInfoSections.SHELL: "shell",
    ServiceInfoSections.TOPOLOGY: "topology",
    ServiceInfoSections.XML_OVER_HTTP_METHODS: "xml-over-http-methods",
    ServiceInfoSections.MEANINGFUL_USE: "meaningful-use",
}


@dataclass
class Location:
    """Country and optional state/province used to pick an instance."""
    country: str
    state_province: Optional[str] = None


@dataclass
class ServiceDefinition:
    last_updated: Optional[datetime]
    platform_url: Optional[str]
    platform_version: Optional[str]
    shell_url: Optional[str]
    xml: bytes


@dataclass
class HealthServiceInstance:
    id: Optional[str]
    name: Optional[str]
    description: Optional[str]
    health_service_url: Optional[str]
    shell_url: Optional[str]


class PlatformClient:
    """Platform methods issued over a connection."""

    def __init__(self, connection: "HealthVaultConnection"):
        self.connection = connection

    async def get_service_definition(
        self,
        sections: Optional[ServiceInfoSections] = None,
        last_updated: Optional[datetime] = None,
    ) -> ServiceDefinition:
        """
        Get the service definition.

        Args:
            sections: Limit the response to these sections (default: all).
            last_updated: Only return sections changed after this time.
        """
        params = b""
        if sections is not None:
            root = etree.Element("response-sections")
            for flag, name in _SECTION_NAMES.items():
                if flag in sections:
                    etree.SubElement(root, "section").text = name
            params += etree.tostring(root)
        if last_updated is not None:
            updated = etree.Element("updated-date")
            if last_updated.tzinfo is None:
                last_updated = last_updated.replace(tzinfo=timezone.utc)
            updated.text = last_updated.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            params += etree.tostring(updated)

        response = await self.connection.execute(
            HealthVaultMethods.GET_SERVICE_DEFINITION,
            GET_SERVICE_DEFINITION_VERSION,
            params or None,
        )
        info = response.info
        platform = _child(info, "platform")
        shell = _child(info, "shell")
        return ServiceDefinition(
            last_updated=parse_xml_datetime(_child_text(info, "updated")),
            platform_url=_child_text(platform, "url"),
            platform_version=_child_text(platform, "version"),
            shell_url=_child_text(shell, "url"),
            xml=response.xml,
        )

    async def select_instance(self, location: Location) -> HealthServiceInstance:
        """Ask the service which instance serves ``location``."""
        if location is None:
            raise ValueError("location must not be None")

        preferred = etree.Element("preferred-location")
        loc = etree.SubElement(preferred, "location")
        etree.SubElement(loc, "country").text = location.country
        if location.state_province:
            etree.SubElement(loc, "state-province").text = location.state_province

        response = await self.connection.execute(
            HealthVaultMethods.SELECT_INSTANCE,
            SELECT_INSTANCE_VERSION,
            etree.tostring(preferred),
        )
        selected = _child(response.info, "selected-instance")
        return HealthServiceInstance(
            id=_child_text(selected, "id"),
            name=_child_text(selected, "name"),
            description=_child_text(selected, "description"),
            health_service_url=_child_text(selected, "platform-url"),
            shell_url=_child_text(selected, "shell-url"),
        )
