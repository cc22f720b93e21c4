"""
Tests for healthvault_client.executor: signing, retries and session refresh.
"""

import asyncio
import base64
import hashlib
import hmac
from uuid import UUID

import pytest
from lxml import etree

from conftest import CAST, RESPONSE_ID, error_response, ok_response
from healthvault_client import (
    HealthServiceAccessDeniedError,
    HealthServiceTransportError,
    HealthVaultAuthenticationError,
    HealthVaultConnectionFactory,
    HealthVaultMethods,
    TransportResponse,
)

GET_SERVICE_DEFINITION = HealthVaultMethods.GET_SERVICE_DEFINITION
PUT_THINGS = HealthVaultMethods.PUT_THINGS


async def _connect(transport, config):
    factory = HealthVaultConnectionFactory(transport_factory=lambda cfg: transport)
    factory.set_configuration(config)
    return await factory.get_connection()


class TestExecute:
    @pytest.mark.asyncio
    async def test_ok_payload_returned_unchanged(self, transport, config):
        transport.queue(GET_SERVICE_DEFINITION, TransportResponse(200, {}, b"<x/>"))
        connection = await _connect(transport, config)

        response = await connection.execute(GET_SERVICE_DEFINITION, 1, "<params/>")

        assert response.xml == b"<x/>"
        assert len(transport.calls_for(GET_SERVICE_DEFINITION)) == 1

    @pytest.mark.asyncio
    async def test_request_is_signed_with_session_secret(self, transport, config):
        transport.queue(GET_SERVICE_DEFINITION, ok_response())
        connection = await _connect(transport, config)
        credential = connection.session.current()

        await connection.execute(GET_SERVICE_DEFINITION, 1)

        root = etree.fromstring(transport.calls_for(GET_SERVICE_DEFINITION)[0])
        assert root.findtext("header/auth-session/auth-token") == "token-1"
        header = etree.tostring(root.find("header"), method="c14n", exclusive=True)
        expected = base64.b64encode(
            hmac.new(credential.shared_secret, header, hashlib.sha256).digest()
        ).decode()
        assert root.findtext("auth/hmac-data") == expected

    @pytest.mark.asyncio
    async def test_handshake_is_anonymous(self, transport, config):
        await _connect(transport, config)

        root = etree.fromstring(transport.calls_for(CAST)[0])
        assert root.find("auth") is None
        assert root.findtext("header/app-id") == str(config.master_application_id)
        assert root.find("info/auth-info/credential/appserver2/sig") is not None

    @pytest.mark.asyncio
    async def test_service_error_is_raised(self, transport, config):
        transport.queue(
            GET_SERVICE_DEFINITION,
            error_response(11, "Access denied", headers={"WC_ResponseId": RESPONSE_ID}),
        )
        connection = await _connect(transport, config)

        with pytest.raises(HealthServiceAccessDeniedError) as exc_info:
            await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert exc_info.value.status_code == 11
        assert exc_info.value.message == "Access denied"
        assert exc_info.value.response_id == UUID(RESPONSE_ID)

    @pytest.mark.asyncio
    async def test_response_id_attached_on_success(self, transport, config):
        transport.queue(GET_SERVICE_DEFINITION, ok_response(headers={"WC_ResponseId": RESPONSE_ID}))
        connection = await _connect(transport, config)

        response = await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert response.response_id == UUID(RESPONSE_ID)


class TestSessionRefresh:
    @pytest.mark.asyncio
    async def test_expired_session_refreshed_and_retried_once(self, transport, config):
        transport.queue(
            GET_SERVICE_DEFINITION,
            error_response(65, "Session expired"),
            TransportResponse(200, {}, b"<x/>"),
        )
        connection = await _connect(transport, config)

        response = await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert response.xml == b"<x/>"
        calls = transport.calls_for(GET_SERVICE_DEFINITION)
        assert len(calls) == 2
        assert len(transport.calls_for(CAST)) == 2
        # The retry carries the refreshed token
        assert etree.fromstring(calls[1]).findtext("header/auth-session/auth-token") == "token-2"

    @pytest.mark.asyncio
    async def test_second_expiry_is_fatal(self, transport, config):
        transport.queue(GET_SERVICE_DEFINITION, error_response(65, "Session expired"))
        connection = await _connect(transport, config)

        with pytest.raises(HealthVaultAuthenticationError) as exc_info:
            await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert exc_info.value.status_code == 65
        assert len(transport.calls_for(GET_SERVICE_DEFINITION)) == 2
        assert len(transport.calls_for(CAST)) == 2

    @pytest.mark.asyncio
    async def test_credential_token_expired_also_refreshes(self, transport, config):
        transport.queue(
            GET_SERVICE_DEFINITION,
            error_response(7, "Credential token expired"),
            ok_response(),
        )
        connection = await _connect(transport, config)

        await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert len(transport.calls_for(CAST)) == 2

    @pytest.mark.asyncio
    async def test_concurrent_expiries_share_one_refresh(self, transport, config):
        connection = await _connect(transport, config)
        transport.handshake_delay = 0.05
        transport.queue(
            GET_SERVICE_DEFINITION,
            *[error_response(65) for _ in range(5)],
            ok_response(),
        )

        await asyncio.gather(*(connection.execute(GET_SERVICE_DEFINITION, 1) for _ in range(5)))

        # One handshake at connect time, one shared refresh
        assert len(transport.calls_for(CAST)) == 2


class TestTransportRetry:
    @pytest.mark.asyncio
    async def test_idempotent_method_retried(self, transport, config):
        transport.queue(
            GET_SERVICE_DEFINITION,
            HealthServiceTransportError("connection refused"),
            ok_response(),
        )
        connection = await _connect(transport, config)

        await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert len(transport.calls_for(GET_SERVICE_DEFINITION)) == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, transport, config):
        transport.queue(GET_SERVICE_DEFINITION, HealthServiceTransportError("connection refused"))
        connection = await _connect(transport, config)

        with pytest.raises(HealthServiceTransportError):
            await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert len(transport.calls_for(GET_SERVICE_DEFINITION)) == 1 + config.max_retries

    @pytest.mark.asyncio
    async def test_non_idempotent_method_not_retried(self, transport, config):
        transport.queue(PUT_THINGS, HealthServiceTransportError("connection reset"), ok_response())
        connection = await _connect(transport, config)

        with pytest.raises(HealthServiceTransportError):
            await connection.execute(PUT_THINGS, 2, "<thing/>")

        assert len(transport.calls_for(PUT_THINGS)) == 1

    @pytest.mark.asyncio
    async def test_idempotent_override(self, transport, config):
        transport.queue(PUT_THINGS, HealthServiceTransportError("connection reset"), ok_response())
        connection = await _connect(transport, config)

        await connection.execute(PUT_THINGS, 2, "<thing/>", idempotent=True)

        assert len(transport.calls_for(PUT_THINGS)) == 2

    @pytest.mark.asyncio
    async def test_os_error_is_wrapped(self, transport, config):
        transport.queue(PUT_THINGS, ConnectionRefusedError("refused"))
        connection = await _connect(transport, config)

        with pytest.raises(HealthServiceTransportError):
            await connection.execute(PUT_THINGS, 2)

    @pytest.mark.asyncio
    async def test_http_503_is_retried(self, transport, config):
        transport.queue(
            GET_SERVICE_DEFINITION,
            TransportResponse(503, {}, b"Service Unavailable"),
            ok_response(),
        )
        connection = await _connect(transport, config)

        await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert len(transport.calls_for(GET_SERVICE_DEFINITION)) == 2

    @pytest.mark.asyncio
    async def test_http_400_is_not_retried(self, transport, config):
        transport.queue(GET_SERVICE_DEFINITION, TransportResponse(400, {}, b"Bad Request"))
        connection = await _connect(transport, config)

        with pytest.raises(HealthServiceTransportError) as exc_info:
            await connection.execute(GET_SERVICE_DEFINITION, 1)

        assert exc_info.value.http_status == 400
        assert len(transport.calls_for(GET_SERVICE_DEFINITION)) == 1

    @pytest.mark.asyncio
    async def test_http_error_with_envelope_raises_service_error(self, transport, config):
        body = error_response(11, "Access denied").body
        transport.queue(GET_SERVICE_DEFINITION, TransportResponse(500, {}, body))
        connection = await _connect(transport, config)

        with pytest.raises(HealthServiceAccessDeniedError):
            await connection.execute(GET_SERVICE_DEFINITION, 1)


class _SlowTransport:
    """Wraps a transport and stalls one method."""

    def __init__(self, inner, method):
        self.inner = inner
        self.method = method

    async def send(self, url, body, headers, timeout):
        from conftest import method_of

        if method_of(body) == self.method:
            await asyncio.sleep(10)
        return await self.inner.send(url, body, headers, timeout)

    async def close(self):
        await self.inner.close()


class TestTimeout:
    @pytest.mark.asyncio
    async def test_timeout_raises_transport_error_and_keeps_session(self, transport, config):
        slow = _SlowTransport(transport, GET_SERVICE_DEFINITION)
        factory = HealthVaultConnectionFactory(transport_factory=lambda cfg: slow)
        factory.set_configuration(config)
        connection = await factory.get_connection()
        credential = connection.session.current()

        with pytest.raises(HealthServiceTransportError, match="did not complete"):
            await connection.execute(GET_SERVICE_DEFINITION, 1, timeout=0.05)

        assert connection.session.current() is credential
        assert await factory.get_connection() is connection
