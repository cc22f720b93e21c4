"""Shared test configuration: an in-memory transport and a ready configuration."""

import asyncio
from typing import Mapping, Optional, Union

import pytest
from lxml import etree

from healthvault_client import (
    HealthVaultConfiguration,
    HealthVaultMethods,
    SharedSecretCredential,
    Transport,
    TransportResponse,
)

APP_ID = "11111111-1111-1111-1111-111111111111"
RESPONSE_ID = "22222222-2222-2222-2222-222222222222"
SERVICE_URL = "https://platform.example.com/platform/"

CAST = HealthVaultMethods.CREATE_AUTHENTICATED_SESSION_TOKEN


def ok_response(info: str = "", headers: Optional[dict] = None) -> TransportResponse:
    """A status-0 envelope wrapping ``info``."""
    body = (
        "<response><status><code>0</code></status>"
        f'<wc:info xmlns:wc="urn:com.microsoft.wc.methods.response.Test">{info}</wc:info>'
        "</response>"
    )
    return TransportResponse(200, headers or {}, body.encode())


def error_response(code: int, message: str = "failure", headers: Optional[dict] = None) -> TransportResponse:
    body = (
        f"<response><status><code>{code}</code>"
        f"<error><message>{message}</message></error>"
        "</status></response>"
    )
    return TransportResponse(200, headers or {}, body.encode())


def method_of(body: bytes) -> Optional[str]:
    root = etree.fromstring(body)
    return root.findtext("header/method")


class FakeTransport(Transport):
    """Records requests and replays queued responses per method.

    The handshake answers with ``token-1``, ``token-2``... unless responses
    for it were queued. For other methods the last queued item repeats.
    """

    def __init__(self):
        self.calls: list[tuple[str, bytes]] = []
        self.responses: dict[str, list[Union[TransportResponse, Exception]]] = {}
        self.handshake_delay = 0.0
        self.tokens_issued = 0
        self.handshakes_in_flight = 0
        self.max_handshakes_in_flight = 0
        self.closed = False

    def queue(self, method: str, *items: Union[TransportResponse, Exception]) -> None:
        self.responses.setdefault(method, []).extend(items)

    def calls_for(self, method: str) -> list[bytes]:
        return [body for name, body in self.calls if name == method]

    async def send(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        timeout: float,
    ) -> TransportResponse:
        method = method_of(body)
        self.calls.append((method, body))

        queued = self.responses.get(method)
        if method == CAST and not queued:
            self.handshakes_in_flight += 1
            self.max_handshakes_in_flight = max(self.max_handshakes_in_flight, self.handshakes_in_flight)
            try:
                await asyncio.sleep(self.handshake_delay)
            finally:
                self.handshakes_in_flight -= 1
            self.tokens_issued += 1
            return ok_response(f'<token app-id="{APP_ID}">token-{self.tokens_issued}</token>')

        if not queued:
            raise AssertionError(f"No response queued for {method}")
        item = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config() -> HealthVaultConfiguration:
    return HealthVaultConfiguration(
        master_application_id=APP_ID,
        service_url=SERVICE_URL,
        application_credential=SharedSecretCredential(b"application-secret"),
        max_retries=2,
        retry_delay=0,
        retry_delay_max=0,
    )
