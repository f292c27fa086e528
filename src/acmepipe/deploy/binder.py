"""Certificate import and binding on a target web server.

:class:`DeploymentBinder` imports an issued certificate into the target's
store and points the site's TLS binding at it.  Import is deduplicated
by fingerprint so a re-run never leaves duplicate store entries, and an
existing binding is updated in place rather than deleted and recreated.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from acmepipe.core.crypto import fingerprints_match, normalize_fingerprint
from acmepipe.core.leases import LeaseRegistry
from acmepipe.errors import (
    BindingUpdateFailed,
    CertificateImportFailed,
    TargetServerError,
)
from acmepipe.models.binding import Binding

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmepipe.config.settings import DeploySettings
    from acmepipe.deploy.base import TargetServer
    from acmepipe.hooks.registry import HookRegistry
    from acmepipe.models.binding import DeploymentTarget
    from acmepipe.models.certificate import CertificateArtifact

log = logging.getLogger(__name__)


class DeploymentBinder:
    """Deploy certificate artifacts to target servers.

    Parameters
    ----------
    server_factory:
        Builds a :class:`TargetServer` for a server name.
    settings:
        The ``deploy`` settings section.
    leases:
        Serialises binding updates per (server, site, protocol, port).
    hooks:
        Optional event emitter.

    """

    def __init__(
        self,
        server_factory: Callable[[str], TargetServer],
        *,
        settings: DeploySettings,
        leases: LeaseRegistry | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self._server_factory = server_factory
        self._settings = settings
        self._leases = leases or LeaseRegistry("binding update", BindingUpdateFailed)
        self._hooks = hooks

    def deploy(self, target: DeploymentTarget, artifact: CertificateArtifact) -> str:
        """Import *artifact* and bind it to *target*; return the fingerprint.

        Raises
        ------
        CertificateImportFailed
            The bundle was rejected or the server reported a different
            certificate than the one imported.
        SiteNotFound
            The target site does not exist.
        BindingUpdateFailed
            The binding could not be read, created or updated.

        """
        server = self._server_factory(target.server)
        fingerprint = self._import(server, target, artifact)

        key = target.binding_key.lower()
        with self._leases.hold(key, timeout=self._settings.binding_lock_timeout_seconds):
            action = self._bind(server, target, fingerprint)

        log.info(
            "Certificate %s bound to %s (%s)",
            fingerprint,
            target.binding_key,
            action,
        )
        if self._hooks is not None:
            self._hooks.dispatch(
                "deployment.completed",
                {
                    "domain": artifact.domain,
                    "server": target.server,
                    "site": target.site,
                    "port": target.port,
                    "fingerprint": fingerprint,
                    "action": action,
                },
            )
        return fingerprint

    def _import(
        self,
        server: TargetServer,
        target: DeploymentTarget,
        artifact: CertificateArtifact,
    ) -> str:
        try:
            if server.has_certificate(artifact.fingerprint, target.store_location):
                log.info(
                    "Certificate %s already present in store %s on %s, skipping import",
                    artifact.fingerprint,
                    target.store_location,
                    target.server,
                )
                return normalize_fingerprint(artifact.fingerprint)
            reported = server.import_certificate(
                artifact.bundle,
                artifact.passphrase,
                target.store_location,
            )
        except TargetServerError as exc:
            msg = f"Could not import certificate on {target.server}: {exc.detail}"
            raise CertificateImportFailed(msg) from exc

        if not fingerprints_match(reported, artifact.fingerprint):
            msg = (
                f"{target.server} reported fingerprint {reported} after import, "
                f"expected {artifact.fingerprint}"
            )
            raise CertificateImportFailed(msg)
        return normalize_fingerprint(reported)

    def _bind(self, server: TargetServer, target: DeploymentTarget, fingerprint: str) -> str:
        try:
            existing = server.get_binding(
                target.site,
                target.protocol,
                target.port,
                target.host_name,
            )
            if existing is not None and fingerprints_match(existing.fingerprint, fingerprint):
                return "unchanged"

            if existing is not None:
                server.set_binding(
                    replace(
                        existing,
                        fingerprint=fingerprint,
                        store_location=target.store_location,
                    ),
                )
                return "updated"

            server.set_binding(
                Binding(
                    server=target.server,
                    site=target.site,
                    protocol=target.protocol,
                    port=target.port,
                    fingerprint=fingerprint,
                    store_location=target.store_location,
                    host_name=target.host_name,
                ),
            )
        except TargetServerError as exc:
            msg = f"Could not update binding {target.binding_key}: {exc.detail}"
            raise BindingUpdateFailed(msg) from exc
        return "created"
