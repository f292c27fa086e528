"""ACME protocol, account and issuance for ACMEPIPE.

Public API::

    from acmepipe.acme import AcmeAccountManager, CertificateIssuer, client_factory
"""

from acmepipe.acme.account import AcmeAccountManager
from acmepipe.acme.client import AcmeClient, client_factory
from acmepipe.acme.issuer import CertificateIssuer

__all__ = ["AcmeAccountManager", "AcmeClient", "CertificateIssuer", "client_factory"]
