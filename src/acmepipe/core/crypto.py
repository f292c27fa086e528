"""Certificate key, CSR, PKCS#12 and fingerprint helpers.

Every issuance generates a fresh certificate key pair and a fresh
single-use container passphrase; nothing here caches key material.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from acmepipe.core.types import KeyType
from acmepipe.errors import CertificateImportFailed, CertificateIssuanceFailed

if TYPE_CHECKING:
    from datetime import datetime

CertificateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

_PASSPHRASE_BYTES = 32

_PEM_CERT_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----[\s\S]+?-----END CERTIFICATE-----",
)

_FINGERPRINT_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
}


# ---------------------------------------------------------------------------
# Keys and CSR
# ---------------------------------------------------------------------------


def generate_private_key(key_type: KeyType | str = KeyType.EC256) -> CertificateKey:
    """Generate a fresh private key for a certificate."""
    key_type = KeyType(key_type)
    if key_type == KeyType.EC256:
        return ec.generate_private_key(ec.SECP256R1())
    if key_type == KeyType.EC384:
        return ec.generate_private_key(ec.SECP384R1())
    size = int(key_type.value.removeprefix("RSA"))
    return rsa.generate_private_key(public_exponent=65537, key_size=size)


def build_csr(domain: str, key: CertificateKey) -> bytes:
    """Build a DER-encoded CSR for *domain* signed by *key*."""
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(domain)]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.DER)


def private_key_pem(key: CertificateKey) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


def generate_passphrase() -> str:
    """Return a random, single-use container passphrase."""
    return secrets.token_urlsafe(_PASSPHRASE_BYTES)


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


def split_pem_chain(chain_pem: str) -> list[x509.Certificate]:
    """Parse a PEM chain (leaf first) into certificate objects.

    Raises
    ------
    CertificateIssuanceFailed
        If the chain contains no parseable certificate.

    """
    blocks = _PEM_CERT_RE.findall(chain_pem or "")
    if not blocks:
        msg = "Downloaded certificate chain contains no PEM certificates"
        raise CertificateIssuanceFailed(msg)
    try:
        return [x509.load_pem_x509_certificate(b.encode("ascii")) for b in blocks]
    except ValueError as exc:
        msg = f"Downloaded certificate chain is malformed: {exc}"
        raise CertificateIssuanceFailed(msg) from exc


def certificate_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def certificate_fingerprint(
    cert: x509.Certificate | str | bytes,
    algorithm: str = "sha256",
) -> str:
    """Return the upper-case hex fingerprint of a certificate's DER encoding.

    Parameters
    ----------
    cert:
        A certificate object, PEM text, or DER bytes.
    algorithm:
        ``"sha256"`` or ``"sha1"`` (the thumbprint most certificate
        stores display).

    """
    hasher = _FINGERPRINT_ALGORITHMS.get(algorithm)
    if hasher is None:
        msg = f"Unsupported fingerprint algorithm '{algorithm}'"
        raise ValueError(msg)

    if isinstance(cert, str):
        cert = x509.load_pem_x509_certificate(cert.encode("ascii"))
    if isinstance(cert, x509.Certificate):
        der = cert.public_bytes(serialization.Encoding.DER)
    else:
        der = cert
    return hasher(der).hexdigest().upper()


def normalize_fingerprint(value: str | None) -> str:
    """Normalise a fingerprint for comparison (strip separators, upper-case)."""
    if not value:
        return ""
    return re.sub(r"[^0-9A-Fa-f]", "", value).upper()


def fingerprints_match(a: str | None, b: str | None) -> bool:
    na, nb = normalize_fingerprint(a), normalize_fingerprint(b)
    return bool(na) and na == nb


def not_after(cert: x509.Certificate) -> datetime:
    return cert.not_valid_after_utc


def public_keys_match(cert: x509.Certificate, key: CertificateKey) -> bool:
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    enc = serialization.Encoding.DER
    return cert.public_key().public_bytes(enc, fmt) == key.public_key().public_bytes(enc, fmt)


# ---------------------------------------------------------------------------
# PKCS#12
# ---------------------------------------------------------------------------


def build_pkcs12(
    name: str,
    key: CertificateKey,
    cert: x509.Certificate,
    chain: list[x509.Certificate],
    passphrase: str,
) -> bytes:
    """Package key, leaf and intermediates into an encrypted PKCS#12 bundle."""
    return pkcs12.serialize_key_and_certificates(
        name=name.encode("utf-8"),
        key=key,
        cert=cert,
        cas=chain or None,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode("utf-8")),
    )


def load_pkcs12(bundle: bytes, passphrase: str) -> tuple[CertificateKey, x509.Certificate]:
    """Decrypt a PKCS#12 bundle and return ``(key, leaf_certificate)``.

    Raises
    ------
    CertificateImportFailed
        On a malformed bundle, a wrong passphrase, or a bundle with no
        key or certificate.

    """
    try:
        key, cert, _ = pkcs12.load_key_and_certificates(bundle, passphrase.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        msg = f"Certificate bundle could not be decrypted: {exc}"
        raise CertificateImportFailed(msg) from exc
    if key is None or cert is None:
        msg = "Certificate bundle does not contain both a key and a certificate"
        raise CertificateImportFailed(msg)
    return key, cert
