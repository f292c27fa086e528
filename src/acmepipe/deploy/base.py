"""Abstract base class for target web server management APIs.

A target server holds certificates in named stores and serves HTTPS
through per-site bindings.  Custom servers are loaded with
``deploy.backend: ext:pkg.module.Class`` and must subclass
:class:`TargetServer`.

Error contract:

- site does not exist: :class:`~acmepipe.errors.SiteNotFound`
- anything transient: :class:`~acmepipe.errors.TargetServerError`
  with ``retryable=True``
- rejected import: :class:`~acmepipe.errors.CertificateImportFailed`
- rejected binding change: :class:`~acmepipe.errors.BindingUpdateFailed`
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from acmepipe.models.binding import Binding


class TargetServer(abc.ABC):
    """One managed web server, identified by its host name."""

    def __init__(self, server: str) -> None:
        self.server = server

    @abc.abstractmethod
    def has_certificate(self, fingerprint: str, store_location: str) -> bool:
        """Return whether *store_location* already holds *fingerprint*."""

    @abc.abstractmethod
    def import_certificate(self, bundle: bytes, passphrase: str, store_location: str) -> str:
        """Import a PKCS#12 bundle and return the stored certificate's fingerprint."""

    @abc.abstractmethod
    def get_binding(
        self,
        site: str,
        protocol: str,
        port: int,
        host_name: str | None = None,
    ) -> Binding | None:
        """Return the site's binding for *protocol*/*port*, or ``None``."""

    @abc.abstractmethod
    def set_binding(self, binding: Binding) -> Binding:
        """Create or replace the binding for (site, protocol, port)."""
