"""
Tests for healthvault_client.transport.

Covers SSL context creation with the ALLOW_INSECURE guard, CA bundle support
and error wrapping in AiohttpTransport.
"""

import asyncio
import ssl
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from healthvault_client import HealthServiceTransportError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _import_fresh(env_overrides: dict | None = None):
    """Import transport module with a clean environment.

    Module-level globals (VERIFY_SSL_DEFAULT, ALLOW_INSECURE, CA_BUNDLE_DEFAULT)
    are evaluated at import time, so the module is reloaded after patching
    the environment.
    """
    import importlib
    import os

    env = os.environ.copy()
    for key in (
        "HEALTHVAULT_VERIFY_SSL",
        "HEALTHVAULT_ALLOW_INSECURE",
        "HEALTHVAULT_CA_BUNDLE",
    ):
        env.pop(key, None)

    if env_overrides:
        env.update(env_overrides)

    with patch.dict(os.environ, env, clear=True):
        import healthvault_client.transport as mod

        importlib.reload(mod)
        return mod


@pytest.fixture(autouse=True)
def _restore_defaults():
    yield
    _import_fresh()


# ---------------------------------------------------------------------------
# Default behaviour
# ---------------------------------------------------------------------------


class TestDefaultBehaviour:
    def test_verification_enabled_by_default(self):
        mod = _import_fresh()
        ctx = mod.create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_verify_true_explicit(self):
        mod = _import_fresh()
        ctx = mod.create_ssl_context(verify=True)
        assert ctx.verify_mode == ssl.CERT_REQUIRED


# ---------------------------------------------------------------------------
# ALLOW_INSECURE guard
# ---------------------------------------------------------------------------


class TestAllowInsecureGuard:
    def test_verify_false_without_allow_insecure_keeps_verification(self):
        mod = _import_fresh({"HEALTHVAULT_VERIFY_SSL": "false"})
        ctx = mod.create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_verify_false_with_allow_insecure_disables_verification(self):
        mod = _import_fresh({
            "HEALTHVAULT_VERIFY_SSL": "false",
            "HEALTHVAULT_ALLOW_INSECURE": "1",
        })
        ctx = mod.create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_NONE
        assert ctx.check_hostname is False

    def test_explicit_verify_false_with_allow_insecure(self):
        mod = _import_fresh({"HEALTHVAULT_ALLOW_INSECURE": "1"})
        ctx = mod.create_ssl_context(verify=False)
        assert ctx.verify_mode == ssl.CERT_NONE

    def test_warning_logged_when_insecure_ignored(self, caplog):
        import logging

        mod = _import_fresh()
        with caplog.at_level(logging.WARNING, logger="healthvault_client.transport"):
            mod.create_ssl_context(verify=False)
        assert "HEALTHVAULT_VERIFY_SSL=false ignored" in caplog.text


# ---------------------------------------------------------------------------
# CA bundle
# ---------------------------------------------------------------------------


class TestCaBundle:
    def test_ca_bundle_env_var(self, tmp_path):
        ca_file = tmp_path / "ca.pem"
        ca_file.write_text(_make_self_signed_pem())

        mod = _import_fresh({"HEALTHVAULT_CA_BUNDLE": str(ca_file)})
        ctx = mod.create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_REQUIRED

    def test_invalid_ca_bundle_raises(self, tmp_path):
        mod = _import_fresh()
        with pytest.raises((ssl.SSLError, FileNotFoundError, OSError)):
            mod.create_ssl_context(ca_bundle=str(tmp_path / "nonexistent.pem"))


# ---------------------------------------------------------------------------
# AiohttpTransport
# ---------------------------------------------------------------------------


def _session_returning(status: int, headers: dict, body: bytes) -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.headers = headers
    resp.read = AsyncMock(return_value=body)
    session = MagicMock()
    session.post.return_value.__aenter__.return_value = resp
    return session


class TestAiohttpTransport:
    @pytest.mark.asyncio
    async def test_send_returns_response(self):
        mod = _import_fresh()
        transport = mod.AiohttpTransport()
        session = _session_returning(200, {"WC_ResponseId": "abc"}, b"<x/>")

        with patch.object(transport, "_get_session", return_value=session):
            response = await transport.send("https://h/wildcat.ashx", b"<request/>", {}, 5)

        assert response.status == 200
        assert response.headers == {"WC_ResponseId": "abc"}
        assert response.body == b"<x/>"
        assert session.post.call_args.kwargs["data"] == b"<request/>"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()],
    )
    async def test_failures_wrapped(self, error):
        mod = _import_fresh()
        transport = mod.AiohttpTransport()
        session = MagicMock()
        session.post.side_effect = error

        with patch.object(transport, "_get_session", return_value=session):
            with pytest.raises(HealthServiceTransportError) as exc_info:
                await transport.send("https://h/wildcat.ashx", b"<request/>", {}, 5)

        assert exc_info.value.http_status is None
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_close_without_session(self):
        mod = _import_fresh()
        transport = mod.AiohttpTransport()
        await transport.close()
        await transport.close()


# ---------------------------------------------------------------------------
# PEM helper
# ---------------------------------------------------------------------------


def _make_self_signed_pem() -> str:
    """Generate a minimal self-signed PEM certificate for testing."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec
    from cryptography.x509.oid import NameOID
    import datetime

    key = ec.generate_private_key(ec.SECP256R1())
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, "test-ca"),
    ])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()
