"""TLS binding on a target web server."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DeploymentTarget:
    """Where a certificate is deployed: one listener of one site."""

    server: str
    site: str
    port: int = 443
    protocol: str = "https"
    store_location: str = "My"
    host_name: str | None = None

    @property
    def binding_key(self) -> str:
        return f"{self.server}/{self.site}/{self.protocol}:{self.port}"


@dataclass(frozen=True)
class Binding:
    server: str
    site: str
    protocol: str
    port: int
    fingerprint: str
    store_location: str = "My"
    host_name: str | None = None
