"""Issued certificate artifact."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class CertificateArtifact:
    """Result of one successful issuance.

    Ownership passes to the deployment stage.  The passphrase protects
    ``bundle`` and is generated fresh for every issuance.
    """

    domain: str
    certificate_pem: str
    chain_pem: str
    private_key_pem: str = field(repr=False)
    bundle: bytes = field(repr=False)
    passphrase: str = field(repr=False)
    fingerprint: str
    not_after: datetime | None = None
