"""Tests for acmepipe.deploy.verify — VerificationProbe."""

from __future__ import annotations

import ssl
from dataclasses import replace
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives.serialization import Encoding

from acmepipe.core.crypto import certificate_fingerprint
from acmepipe.deploy.verify import VerificationProbe
from acmepipe.errors import TargetServerError
from acmepipe.models.binding import Binding, DeploymentTarget

FP = "AB" * 32


@pytest.fixture
def bound_server(fake_server):
    fake_server.bindings[("Default", "https", 443)] = Binding("web01", "Default", "https", 443, FP)
    return fake_server


@pytest.fixture
def probe(settings, bound_server, hooks):
    return VerificationProbe(lambda s: bound_server, settings.verify, hooks=hooks)


class TestBindingCheck:
    def test_match(self, probe, target, hooks):
        result = probe.verify(target, FP.lower())
        assert result
        assert result.observed_fingerprint == FP
        assert hooks.last("verification.completed")["outcome"] == "ok"

    def test_mismatch(self, probe, target, hooks):
        result = probe.verify(target, "CD" * 32)
        assert not result
        assert result.reason == "fingerprint mismatch"
        assert result.observed_fingerprint == FP
        assert hooks.last("verification.completed")["outcome"] == "fingerprint mismatch"

    def test_binding_missing(self, probe):
        result = probe.verify(DeploymentTarget("web01", "Default", port=8443), FP)
        assert not result
        assert result.reason == "binding not found"

    def test_site_missing_never_raises(self, probe):
        result = probe.verify(DeploymentTarget("web01", "Nope"), FP)
        assert not result
        assert result.reason.startswith("siteNotFound:")

    def test_transport_error_never_raises(self, probe, bound_server, target):
        bound_server.fail_get = TargetServerError("timed out", retryable=True)
        result = probe.verify(target, FP)
        assert not result
        assert result.reason == "targetServerError: timed out"

    def test_os_error_never_raises(self, probe, bound_server, target):
        bound_server.fail_get = ConnectionResetError("reset")
        result = probe.verify(target, FP)
        assert not result
        assert result.reason.startswith("transport error")

    def test_read_only(self, probe, bound_server, target):
        probe.verify(target, "CD" * 32)
        assert bound_server.set_calls == []
        assert bound_server.imports == 0


class TestHandshakeCheck:
    @pytest.fixture
    def tls_probe(self, settings, bound_server):
        verify = replace(settings.verify, tls_handshake=True, tls_host="10.0.0.5")
        return VerificationProbe(lambda s: bound_server, verify)

    def test_presented_certificate_matches(self, settings, fake_server, test_ca):
        fp = certificate_fingerprint(test_ca.cert)
        fake_server.bindings[("Default", "https", 443)] = Binding(
            "web01", "Default", "https", 443, fp,
        )
        verify = replace(settings.verify, tls_handshake=True)
        probe = VerificationProbe(lambda s: fake_server, verify)
        der = test_ca.cert.public_bytes(Encoding.DER)

        target = DeploymentTarget("web01", "Default", host_name="www.example.com")
        with patch("acmepipe.deploy.verify.fetch_peer_certificate", return_value=der) as fetch:
            assert probe.verify(target, fp)
        fetch.assert_called_once_with(
            "web01",
            443,
            server_name="www.example.com",
            timeout=settings.verify.tls_timeout_seconds,
        )

    def test_presented_certificate_mismatch(self, tls_probe, target, test_ca):
        der = test_ca.cert.public_bytes(Encoding.DER)
        with patch("acmepipe.deploy.verify.fetch_peer_certificate", return_value=der) as fetch:
            result = tls_probe.verify(target, FP)
        assert not result
        assert result.reason == "presented certificate mismatch"
        assert fetch.call_args.args[0] == "10.0.0.5"

    def test_handshake_failure(self, tls_probe, target):
        err = ssl.SSLError("handshake failure")
        with patch("acmepipe.deploy.verify.fetch_peer_certificate", side_effect=err):
            result = tls_probe.verify(target, FP)
        assert not result
        assert result.reason.startswith("TLS handshake failed")

    def test_skipped_when_binding_wrong(self, tls_probe, target):
        with patch("acmepipe.deploy.verify.fetch_peer_certificate") as fetch:
            assert not tls_probe.verify(target, "CD" * 32)
        fetch.assert_not_called()

    def test_fingerprint_algorithm_applies_to_presented_certificate(
        self, settings, fake_server, test_ca,
    ):
        fp = certificate_fingerprint(test_ca.cert, "sha1")
        fake_server.bindings[("Default", "https", 443)] = Binding(
            "web01", "Default", "https", 443, fp,
        )
        verify = replace(settings.verify, tls_handshake=True)
        probe = VerificationProbe(lambda s: fake_server, verify, fingerprint_algorithm="sha1")
        der = test_ca.cert.public_bytes(Encoding.DER)

        target = DeploymentTarget("web01", "Default")
        with patch("acmepipe.deploy.verify.fetch_peer_certificate", return_value=der):
            result = probe.verify(target, fp)
        assert result
        assert result.observed_fingerprint == fp
