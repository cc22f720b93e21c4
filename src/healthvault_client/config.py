"""
Configuration for HealthVault connections.

A ``HealthVaultConfiguration`` is freely mutable until a connection factory
locks it; after that every assignment raises ``InvalidStateError``.
Timeout and retry defaults can be tuned through environment variables.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional
from uuid import UUID

from .errors import InvalidStateError
from .signing import ApplicationCredential


def get_int_env(name: str, default: int) -> int:
    """Get an integer from environment variable, with fallback to default."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


ZERO_UUID = UUID(int=0)

DEFAULT_SERVICE_URL = os.environ.get(
    "HEALTHVAULT_SERVICE_URL", "https://platform.healthvault-ppe.com/platform/"
)
DEFAULT_SHELL_URL = os.environ.get(
    "HEALTHVAULT_SHELL_URL", "https://account.healthvault-ppe.com/"
)

# Request constants - overridable via environment variables
REQUEST_TIMEOUT = get_int_env("HEALTHVAULT_REQUEST_TIMEOUT", 30)  # seconds per HTTP request
MAX_RETRIES = get_int_env("HEALTHVAULT_MAX_RETRIES", 2)  # transport retries for idempotent calls
RETRY_DELAY = get_int_env("HEALTHVAULT_RETRY_DELAY", 1)  # seconds - initial backoff
RETRY_DELAY_MAX = get_int_env("HEALTHVAULT_RETRY_DELAY_MAX", 10)  # seconds - maximum backoff
RETRY_BACKOFF_FACTOR = 2  # multiplier for each failed attempt
MESSAGE_TTL = 1800  # seconds the service accepts a signed request


@dataclass
class HealthVaultConfiguration:
    """Settings for one HealthVault application."""
    master_application_id: UUID = ZERO_UUID
    service_url: str = DEFAULT_SERVICE_URL
    shell_url: str = DEFAULT_SHELL_URL
    instance_id: Optional[str] = None
    application_credential: Optional[ApplicationCredential] = None
    request_timeout: float = REQUEST_TIMEOUT
    max_retries: int = MAX_RETRIES
    retry_delay: float = RETRY_DELAY
    retry_delay_max: float = RETRY_DELAY_MAX
    language: str = "en"
    country: str = "US"
    message_ttl: int = MESSAGE_TTL
    verify_ssl: Optional[bool] = None
    ca_bundle: Optional[str] = None
    action_page_urls: dict[str, str] = field(default_factory=dict)
    _locked: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if self._locked:
            raise InvalidStateError(
                f"Cannot set {name}: the configuration is locked once a connection is created"
            )
        if name == "master_application_id" and isinstance(value, str):
            value = UUID(value)
        object.__setattr__(self, name, value)

    @property
    def is_locked(self) -> bool:
        return self._locked

    def lock(self) -> None:
        """Freeze the configuration. Idempotent."""
        if self._locked:
            return
        object.__setattr__(self, "action_page_urls", MappingProxyType(dict(self.action_page_urls)))
        object.__setattr__(self, "_locked", True)

    def missing_required_properties(self) -> list[str]:
        """Names of mandatory settings that are unset."""
        missing = []
        if not self.master_application_id or self.master_application_id == ZERO_UUID:
            missing.append("master_application_id")
        if not self.service_url:
            missing.append("service_url")
        if self.application_credential is None:
            missing.append("application_credential")
        return missing

    def to_dict(self) -> dict:
        """Convert config to dictionary. The application credential is not serialized."""
        d = {
            "master_application_id": str(self.master_application_id),
            "service_url": self.service_url,
            "shell_url": self.shell_url,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
            "retry_delay_max": self.retry_delay_max,
            "language": self.language,
            "country": self.country,
            "message_ttl": self.message_ttl,
        }
        if self.instance_id:
            d["instance_id"] = self.instance_id
        if self.verify_ssl is not None:
            d["verify_ssl"] = self.verify_ssl
        if self.ca_bundle:
            d["ca_bundle"] = self.ca_bundle
        if self.action_page_urls:
            d["action_page_urls"] = dict(self.action_page_urls)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "HealthVaultConfiguration":
        """Create config from dictionary."""
        return cls(
            master_application_id=UUID(data.get("master_application_id") or str(ZERO_UUID)),
            service_url=data.get("service_url", DEFAULT_SERVICE_URL),
            shell_url=data.get("shell_url", DEFAULT_SHELL_URL),
            instance_id=data.get("instance_id"),
            request_timeout=data.get("request_timeout", REQUEST_TIMEOUT),
            max_retries=data.get("max_retries", MAX_RETRIES),
            retry_delay=data.get("retry_delay", RETRY_DELAY),
            retry_delay_max=data.get("retry_delay_max", RETRY_DELAY_MAX),
            language=data.get("language", "en"),
            country=data.get("country", "US"),
            message_ttl=data.get("message_ttl", MESSAGE_TTL),
            verify_ssl=data.get("verify_ssl"),
            ca_bundle=data.get("ca_bundle"),
            action_page_urls=data.get("action_page_urls", {}),
        )

    @classmethod
    def load(cls, path: Path) -> "HealthVaultConfiguration":
        """Load configuration from a JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))
