"""
URL helpers for auxiliary HealthVault endpoints.

Each helper composes a URL from the configured service or Shell base URL
and returns None when that base URL is not set.
"""

from typing import Optional
from urllib.parse import urlencode, urljoin, urlparse, urlunparse

from .config import HealthVaultConfiguration

BLOB_STREAM_PATH = "/streaming/wildcatblob.ashx"
HEALTH_CLIENT_SERVICE_PATH = "hvclientservice.ashx"
TYPE_SCHEMA_PATH = "type-xsd/"
SHELL_REDIRECTOR_PATH = "redirect.aspx"
AUTH_TARGET = "AUTH"


def _with_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"


def blob_stream_url(config: HealthVaultConfiguration) -> Optional[str]:
    """URL to/from which BLOBs are streamed (service host, fixed path)."""
    if not config.service_url:
        return None
    parsed = urlparse(config.service_url)
    return urlunparse((parsed.scheme, parsed.netloc, BLOB_STREAM_PATH, "", "", ""))


def health_client_service_url(config: HealthVaultConfiguration) -> Optional[str]:
    if not config.service_url:
        return None
    return urljoin(_with_slash(config.service_url), HEALTH_CLIENT_SERVICE_PATH)


def type_schema_url(config: HealthVaultConfiguration) -> Optional[str]:
    """Root URL of the thing type XSDs."""
    if not config.service_url:
        return None
    return urljoin(_with_slash(config.service_url), TYPE_SCHEMA_PATH)


def shell_redirector_url(config: HealthVaultConfiguration) -> Optional[str]:
    if not config.shell_url:
        return None
    return urljoin(_with_slash(config.shell_url), SHELL_REDIRECTOR_PATH)


def shell_authentication_url(config: HealthVaultConfiguration) -> Optional[str]:
    """Shell redirect that starts application authorization (target AUTH)."""
    redirector = shell_redirector_url(config)
    if redirector is None:
        return None
    query = urlencode({
        "target": AUTH_TARGET,
        "targetqs": f"?appid={config.master_application_id}",
    })
    return f"{redirector}?{query}"


def action_url(config: HealthVaultConfiguration, action: str) -> str:
    """
    URL of the page configured for ``action``.

    Raises:
        KeyError: If no page is configured for the action.
    """
    return config.action_page_urls[action]
