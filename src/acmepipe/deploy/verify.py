"""Post-deployment verification.

:class:`VerificationProbe` reads the live binding back from the target
server and, optionally, performs a TLS handshake against the listener to
compare the certificate actually presented.  It is a pure read: every
negative outcome is returned as a falsy :class:`VerificationResult`.
"""

from __future__ import annotations

import logging
import socket
import ssl
from typing import TYPE_CHECKING

from acmepipe.core.crypto import certificate_fingerprint, fingerprints_match
from acmepipe.errors import PipelineError
from acmepipe.models.results import VerificationResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmepipe.config.settings import VerifySettings
    from acmepipe.deploy.base import TargetServer
    from acmepipe.hooks.registry import HookRegistry
    from acmepipe.models.binding import DeploymentTarget

log = logging.getLogger(__name__)


class VerificationProbe:
    """Confirm that a deployment target serves the expected certificate.

    Parameters
    ----------
    server_factory:
        Returns the :class:`TargetServer` for a server name.
    settings:
        The ``verify`` settings (TLS handshake toggle, host and timeout).
    fingerprint_algorithm:
        Algorithm used to fingerprint the certificate presented during
        the TLS handshake; must match the expected fingerprint.
    hooks:
        Optional event emitter.

    """

    def __init__(
        self,
        server_factory: Callable[[str], TargetServer],
        settings: VerifySettings,
        *,
        fingerprint_algorithm: str = "sha256",
        hooks: HookRegistry | None = None,
    ) -> None:
        self._server_factory = server_factory
        self._settings = settings
        self._algorithm = fingerprint_algorithm
        self._hooks = hooks

    def verify(self, target: DeploymentTarget, expected_fingerprint: str) -> VerificationResult:
        """Return whether *target* serves the certificate *expected_fingerprint*."""
        result = self._check_binding(target, expected_fingerprint)
        if result and self._settings.tls_handshake:
            result = self._check_handshake(target, expected_fingerprint)

        if result:
            log.info("Verified %s serves %s", target.binding_key, expected_fingerprint)
        else:
            log.warning("Verification of %s failed: %s", target.binding_key, result.reason)

        if self._hooks is not None:
            self._hooks.dispatch(
                "verification.completed",
                {
                    "server": target.server,
                    "site": target.site,
                    "port": target.port,
                    "expected": expected_fingerprint,
                    "observed": result.observed_fingerprint,
                    "outcome": "ok" if result else (result.reason or "failed"),
                },
            )
        return result

    def _check_binding(self, target: DeploymentTarget, expected: str) -> VerificationResult:
        try:
            server = self._server_factory(target.server)
            binding = server.get_binding(
                target.site,
                target.protocol,
                target.port,
                target.host_name,
            )
        except PipelineError as exc:
            return VerificationResult(ok=False, reason=f"{exc.code}: {exc.detail}")
        except OSError as exc:
            return VerificationResult(ok=False, reason=f"transport error: {exc}")

        if binding is None:
            return VerificationResult(ok=False, reason="binding not found")
        if not fingerprints_match(binding.fingerprint, expected):
            return VerificationResult(
                ok=False,
                reason="fingerprint mismatch",
                observed_fingerprint=binding.fingerprint,
            )
        return VerificationResult(ok=True, observed_fingerprint=binding.fingerprint)

    def _check_handshake(self, target: DeploymentTarget, expected: str) -> VerificationResult:
        host = self._settings.tls_host or target.server
        server_name = target.host_name or host
        try:
            der = fetch_peer_certificate(
                host,
                target.port,
                server_name=server_name,
                timeout=self._settings.tls_timeout_seconds,
            )
        except (OSError, ssl.SSLError) as exc:
            return VerificationResult(ok=False, reason=f"TLS handshake failed: {exc}")

        observed = certificate_fingerprint(der, self._algorithm)
        if not fingerprints_match(observed, expected):
            return VerificationResult(
                ok=False,
                reason="presented certificate mismatch",
                observed_fingerprint=observed,
            )
        return VerificationResult(ok=True, observed_fingerprint=observed)


def fetch_peer_certificate(
    host: str,
    port: int,
    *,
    server_name: str | None = None,
    timeout: float = 10.0,
) -> bytes:
    """Connect to *host*:*port* and return the DER certificate presented.

    The chain is not validated; only the leaf's identity matters here.
    """
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    with (
        socket.create_connection((host, port), timeout=timeout) as sock,
        context.wrap_socket(sock, server_hostname=server_name or host) as tls,
    ):
        der = tls.getpeercert(binary_form=True)
    if not der:
        msg = f"{host}:{port} presented no certificate"
        raise ssl.SSLError(msg)
    return der
